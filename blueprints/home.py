from flask import Blueprint, redirect, render_template, url_for

from utils.auth_utils import current_user, login_required
from utils.maintenance import is_under_maintenance

home_bp = Blueprint("home", __name__)


@home_bp.route("/")
def frontpage():
    """
    Page d'accueil pour les visiteurs, les connectés vont sur /home.
    """
    if current_user():
        return redirect(url_for("home.home"))
    return render_template("front_page.html")


@home_bp.route("/home")
@login_required
def home():
    return render_template("home.html", user=current_user())


@home_bp.route("/maintenance")
def under_maintenance():
    # Pas d'accès direct hors maintenance
    if not is_under_maintenance():
        return redirect(url_for("home.home"))
    return render_template("under_maintenance.html"), 503
