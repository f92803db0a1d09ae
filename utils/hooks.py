"""
Moteur d'actions / filtres façon WordPress.

Un *filtre* fait passer une valeur à travers tous les callbacks branchés sur un
tag (chacun reçoit la valeur retournée par le précédent). Une *action* appelle
les callbacks avec les mêmes arguments et ignore leurs retours.

Les callbacks sont exécutés par priorité croissante puis par ordre d'ajout.
Un callback peut ajouter / retirer des callbacks sur le hook en cours
d'exécution, ou relancer ce même hook : chaque niveau d'imbrication garde sa
propre position.

Usage :

    from utils import hooks

    hooks.add_filter("app/title", lambda title: title.upper())
    hooks.apply_filters("app/title", "starter")   # -> "STARTER"
"""

import warnings

ALL_TAG = "all"


def build_unique_id(function):
    """
    Identifiant d'un callback dans un hook.
    Deux enregistrements du même callable (même fonction, même méthode liée
    au même objet) ont le même id.
    """
    try:
        hash(function)
    except TypeError:
        return ("id", id(function))
    return function


class Hook:
    """
    Les callbacks d'un tag :
        callbacks = {priority: {unique_id: {"function": ..., "accepted_args": ...}}}
    Les priorités sont toujours triées par ordre croissant.
    """

    def __init__(self):
        self.callbacks = {}
        self.nesting_level = 0
        # niveau d'imbrication -> priorité en cours
        self._iterations = {}

    def add_filter(self, function, priority=10, accepted_args=1):
        idx = build_unique_id(function)
        priority_existed = priority in self.callbacks

        self.callbacks.setdefault(priority, {})[idx] = {
            "function": function,
            "accepted_args": accepted_args,
        }

        if not priority_existed and len(self.callbacks) > 1:
            self.callbacks = dict(sorted(self.callbacks.items()))

    def remove_filter(self, function, priority=10) -> bool:
        idx = build_unique_id(function)
        group = self.callbacks.get(priority)
        if not group or idx not in group:
            return False

        del group[idx]
        if not group:
            del self.callbacks[priority]
        return True

    def has_filter(self, function=None):
        """
        Sans callable : True si au moins un callback est branché.
        Avec callable : sa priorité, ou None s'il n'est pas branché.
        """
        if function is None:
            return self.has_filters()

        idx = build_unique_id(function)
        for priority, group in self.callbacks.items():
            if idx in group:
                return priority
        return None

    def has_filters(self) -> bool:
        return any(group for group in self.callbacks.values())

    def remove_all_filters(self, priority=None):
        if priority is None:
            self.callbacks = {}
        else:
            self.callbacks.pop(priority, None)

    def current_priority(self):
        if not self._iterations:
            return None
        return self._iterations[max(self._iterations)]

    def _next_priority(self, after):
        for priority in self.callbacks:
            if after is None or priority > after:
                return priority
        return None

    def _run(self, value, args, is_action):
        if not self.callbacks:
            return value

        level = self.nesting_level
        self.nesting_level += 1
        num_args = len(args)

        try:
            priority = self._next_priority(None)
            while priority is not None:
                self._iterations[level] = priority

                # Snapshot : un callback ajouté à la priorité courante
                # attendra le prochain passage.
                for the_ in list(self.callbacks.get(priority, {}).values()):
                    if not is_action:
                        args[0] = value

                    function = the_["function"]
                    accepted_args = the_["accepted_args"]
                    if accepted_args == 0:
                        value = function()
                    elif accepted_args >= num_args:
                        value = function(*args)
                    else:
                        value = function(*args[:accepted_args])

                priority = self._next_priority(priority)
        finally:
            self._iterations.pop(level, None)
            self.nesting_level -= 1

        return value

    def apply_filters(self, value, args):
        """
        args contient la valeur en première position, suivie des arguments
        supplémentaires.
        """
        return self._run(value, list(args), is_action=False)

    def do_action(self, args):
        self._run(None, list(args), is_action=True)

    def do_all_hook(self, args):
        """
        Callbacks du tag spécial "all" : reçoivent (tag, *args) en entier,
        quel que soit accepted_args.
        """
        if not self.callbacks:
            return

        level = self.nesting_level
        self.nesting_level += 1
        try:
            priority = self._next_priority(None)
            while priority is not None:
                self._iterations[level] = priority
                for the_ in list(self.callbacks.get(priority, {}).values()):
                    the_["function"](*args)
                priority = self._next_priority(priority)
        finally:
            self._iterations.pop(level, None)
            self.nesting_level -= 1


class HookRegistry:
    """
    tag -> Hook, compteur d'exécutions des actions, pile des tags en cours.
    """

    def __init__(self):
        self.filters = {}
        self.actions = {}
        self.current = []

    # ---------- Enregistrement ----------

    def add_filter(self, tag, function, priority=10, accepted_args=1) -> bool:
        if not callable(function):
            raise TypeError(f"Callback non appelable pour le hook {tag!r} : {function!r}")

        hook = self.filters.get(tag)
        if hook is None:
            hook = self.filters[tag] = Hook()
        hook.add_filter(function, priority, accepted_args)
        return True

    def add_action(self, tag, function, priority=10, accepted_args=1) -> bool:
        return self.add_filter(tag, function, priority, accepted_args)

    def has_filter(self, tag, function=None):
        hook = self.filters.get(tag)
        if hook is None:
            return None if function is not None else False
        return hook.has_filter(function)

    def has_action(self, tag, function=None):
        return self.has_filter(tag, function)

    def remove_filter(self, tag, function, priority=10) -> bool:
        hook = self.filters.get(tag)
        if hook is None:
            return False

        removed = hook.remove_filter(function, priority)
        if not hook.callbacks:
            del self.filters[tag]
        return removed

    def remove_action(self, tag, function, priority=10) -> bool:
        return self.remove_filter(tag, function, priority)

    def remove_all_filters(self, tag, priority=None) -> bool:
        hook = self.filters.get(tag)
        if hook is not None:
            hook.remove_all_filters(priority)
            if not hook.has_filters():
                del self.filters[tag]
        return True

    def remove_all_actions(self, tag, priority=None) -> bool:
        return self.remove_all_filters(tag, priority)

    # ---------- Exécution ----------

    def _call_all_hook(self, args):
        hook = self.filters.get(ALL_TAG)
        if hook is not None:
            hook.do_all_hook(args)

    def apply_filters(self, tag, value, *args):
        self.current.append(tag)
        try:
            if ALL_TAG in self.filters:
                self._call_all_hook([tag, value, *args])

            hook = self.filters.get(tag)
            if hook is None:
                return value
            return hook.apply_filters(value, [value, *args])
        finally:
            self.current.pop()

    def apply_filters_ref_array(self, tag, args):
        return self.apply_filters(tag, *args)

    def do_action(self, tag, *args):
        self.actions[tag] = self.actions.get(tag, 0) + 1

        self.current.append(tag)
        try:
            if ALL_TAG in self.filters:
                self._call_all_hook([tag, *args])

            hook = self.filters.get(tag)
            if hook is not None:
                hook.do_action(args)
        finally:
            self.current.pop()

    def do_action_ref_array(self, tag, args):
        self.do_action(tag, *args)

    def did_action(self, tag) -> int:
        return self.actions.get(tag, 0)

    # ---------- Introspection ----------

    def current_filter(self):
        return self.current[-1] if self.current else None

    def current_action(self):
        return self.current_filter()

    def doing_filter(self, tag=None) -> bool:
        if tag is None:
            return bool(self.current)
        return tag in self.current

    def doing_action(self, tag=None) -> bool:
        return self.doing_filter(tag)

    # ---------- Hooks dépréciés ----------

    def apply_filters_deprecated(self, tag, args, version, replacement=None, message=None):
        if not self.has_filter(tag):
            return args[0]

        self._deprecated_hook(tag, version, replacement, message)
        return self.apply_filters_ref_array(tag, args)

    def do_action_deprecated(self, tag, args, version, replacement=None, message=None):
        if not self.has_action(tag):
            return

        self._deprecated_hook(tag, version, replacement, message)
        self.do_action_ref_array(tag, args)

    def _deprecated_hook(self, tag, version, replacement=None, message=None):
        self.do_action("deprecated_hook_run", tag, replacement, version, message)

        if not self.apply_filters("deprecated_hook_trigger_error", True):
            return

        suffix = f" {message}" if message else ""
        if replacement is not None:
            text = f"{tag} est déprécié depuis la version {version} ! Utilise {replacement} à la place.{suffix}"
        else:
            text = f"{tag} est déprécié depuis la version {version}, sans alternative.{suffix}"
        warnings.warn(text, DeprecationWarning, stacklevel=4)


# Registre global utilisé par l'appli, les templates et utils.formatting
registry = HookRegistry()


def add_filter(tag, function, priority=10, accepted_args=1):
    return registry.add_filter(tag, function, priority, accepted_args)


def add_action(tag, function, priority=10, accepted_args=1):
    return registry.add_action(tag, function, priority, accepted_args)


def has_filter(tag, function=None):
    return registry.has_filter(tag, function)


def has_action(tag, function=None):
    return registry.has_action(tag, function)


def remove_filter(tag, function, priority=10):
    return registry.remove_filter(tag, function, priority)


def remove_action(tag, function, priority=10):
    return registry.remove_action(tag, function, priority)


def remove_all_filters(tag, priority=None):
    return registry.remove_all_filters(tag, priority)


def remove_all_actions(tag, priority=None):
    return registry.remove_all_actions(tag, priority)


def apply_filters(tag, value, *args):
    return registry.apply_filters(tag, value, *args)


def apply_filters_ref_array(tag, args):
    return registry.apply_filters_ref_array(tag, args)


def do_action(tag, *args):
    registry.do_action(tag, *args)


def do_action_ref_array(tag, args):
    registry.do_action_ref_array(tag, args)


def did_action(tag):
    return registry.did_action(tag)


def current_filter():
    return registry.current_filter()


def current_action():
    return registry.current_action()


def doing_filter(tag=None):
    return registry.doing_filter(tag)


def doing_action(tag=None):
    return registry.doing_action(tag)


def apply_filters_deprecated(tag, args, version, replacement=None, message=None):
    return registry.apply_filters_deprecated(tag, args, version, replacement, message)


def do_action_deprecated(tag, args, version, replacement=None, message=None):
    registry.do_action_deprecated(tag, args, version, replacement, message)
