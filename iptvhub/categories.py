#======================================
#          >>>> CATEGORY ENDPOINTS<<<<
#======================================
# categories.py
from flask import Blueprint, current_app
from sqlalchemy import func

from .modules import db
from .db import Category, Channel, slugify
from .errors import ValidationError, NotFound, Conflict
from .helper import send_response, get_json_body, require_fields, get_or_404, login_required, admin_required

categories = Blueprint("categories", __name__)

CATEGORY_STATUSES = ("active", "inactive")


def _unique_slug(name, exclude_id=None):
    slug = slugify(name)
    if not slug:
        raise ValidationError("Category name must contain letters or digits")
    query = Category.query.filter_by(slug=slug)
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise Conflict("A category with this name already exists")
    return slug


def _apply_fields(category, data):
    if "description" in data:
        category.description = data["description"]
    if "icon" in data:
        category.icon = data["icon"]
    if "sort_order" in data:
        try:
            category.sort_order = int(data["sort_order"])
        except (TypeError, ValueError):
            raise ValidationError("sort_order must be an integer")
#----------------------------------------------------------------------
@categories.route("/", methods=["GET"])
def list_categories():
    rows = (Category.query
            .filter_by(status="active")
            .order_by(Category.sort_order.asc(), Category.name.asc())
            .all())
    return send_response("Categories retrieved", [c.to_dict(include_count=True) for c in rows])
#----------------------------------------------------------------------
@categories.route("/<int:category_id>", methods=["GET"])
def get_category(category_id):
    category = get_or_404(Category, category_id, "Category not found")
    return send_response("Category retrieved", category.to_dict(include_count=True))
#----------------------------------------------------------------------
@categories.route("/slug/<slug>", methods=["GET"])
def get_category_by_slug(slug):
    category = Category.query.filter_by(slug=slug, status="active").first()
    if category is None:
        raise NotFound("Category not found")
    return send_response("Category retrieved", category.to_dict(include_count=True))

#======================================
#               >>>>ADMIN<<<<
#======================================
@categories.route("/", methods=["POST"])
@login_required
@admin_required
def create_category():
    data = get_json_body()
    require_fields(data, "name")
    name = str(data["name"]).strip()

    if Category.query.filter(func.lower(Category.name) == name.lower()).first():
        raise Conflict("A category with this name already exists")

    category = Category(name=name, slug=_unique_slug(name))
    _apply_fields(category, data)
    db.session.add(category)
    db.session.commit()

    current_app.logger.info(f"Category created: {category.slug}")
    return send_response("Category created", category.to_dict(), 201)
#----------------------------------------------------------------------
@categories.route("/<int:category_id>", methods=["PUT"])
@login_required
@admin_required
def update_category(category_id):
    category = get_or_404(Category, category_id, "Category not found")
    data = get_json_body()

    if "name" in data:
        name = str(data["name"] or "").strip()
        if not name:
            raise ValidationError("Category name cannot be empty")
        clash = Category.query.filter(func.lower(Category.name) == name.lower(), Category.id != category.id).first()
        if clash:
            raise Conflict("A category with this name already exists")
        category.name = name
        category.slug = _unique_slug(name, exclude_id=category.id)
    _apply_fields(category, data)

    db.session.commit()
    return send_response("Category updated", category.to_dict())
#----------------------------------------------------------------------
@categories.route("/<int:category_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_category(category_id):
    category = get_or_404(Category, category_id, "Category not found")
    in_use = Channel.query.filter_by(category_id=category.id).count()
    if in_use:
        raise Conflict(f"Category still has {in_use} channel(s) assigned")

    db.session.delete(category)
    db.session.commit()
    current_app.logger.info(f"Category deleted: {category.slug}")
    return send_response("Category deleted")
#----------------------------------------------------------------------
@categories.route("/<int:category_id>/status", methods=["PUT"])
@login_required
@admin_required
def update_category_status(category_id):
    category = get_or_404(Category, category_id, "Category not found")
    data = get_json_body()
    status = data.get("status")
    if status not in CATEGORY_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(CATEGORY_STATUSES)}")

    category.status = status
    db.session.commit()
    return send_response("Category status updated", category.to_dict())
