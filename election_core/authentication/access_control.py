# election_core/authentication/access_control.py

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Dict, Mapping, Optional

from flask import current_app, request
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from election_core import db
from election_core.audit.audit_logger import get_audit_logger
from election_core.database.models import Role
from election_core.errors import PermissionDeniedError
from election_core.reference import get_cache

logger = logging.getLogger(__name__)

# Role-Based Access Control over a closed set of resources and actions


class Resource(Enum):
    DASHBOARD = "dashboard"
    ELECTIONS = "elections"
    POSITIONS = "positions"
    CANDIDATES = "candidates"
    VOTERS = "voters"
    YEAR = "year"
    CLASS = "class"
    HOUSE = "house"
    RESULTS = "results"
    DVA = "dva"
    LOG = "log"
    ROLES = "roles"
    USERS = "users"
    SETTINGS = "settings"


class Action(Enum):
    VIEW = "view"
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"


def _resource(value):
    if isinstance(value, Resource):
        return value
    try:
        return Resource(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown resource: {value!r}")


def _action(value):
    if isinstance(value, Action):
        return value
    try:
        return Action(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown action: {value!r}")


@dataclass(frozen=True)
class PermissionSet:
    view: bool = False
    add: bool = False
    edit: bool = False
    delete: bool = False

    @classmethod
    def from_stored(cls, value):
        """Accept ``{"view": true, ...}`` or ``["view", "edit"]``."""
        if isinstance(value, Mapping):
            granted = set()
            for key, flag in value.items():
                action = _action(key)
                if flag is True:
                    granted.add(action.value)
        elif isinstance(value, (list, tuple, set, frozenset)):
            granted = {_action(k).value for k in value}
        elif value is None:
            granted = set()
        else:
            raise ValueError(f"Unsupported permission value: {value!r}")
        return cls(**{name: True for name in granted})

    def allows(self, action: Action) -> bool:
        return getattr(self, action.value)

    def to_dict(self):
        return {a.value: self.allows(a) for a in Action}


@dataclass(frozen=True)
class RolePolicy:
    name: str
    active: bool = True
    permissions: Dict[Resource, PermissionSet] = field(default_factory=dict)

    @classmethod
    def from_stored(cls, name, active, stored):
        permissions = {}
        for key, value in (stored or {}).items():
            try:
                resource = _resource(key)
                permissions[resource] = PermissionSet.from_stored(value)
            except ValueError as e:
                logger.warning("Skipping permission entry %r on role %s: %s", key, name, e)
        return cls(name=name, active=bool(active), permissions=permissions)


def validate_permission_map(stored):
    """Strict form used before a role's permissions are written."""
    if not isinstance(stored, Mapping):
        raise ValueError("Permissions must be an object keyed by resource")
    return {
        _resource(key).value: PermissionSet.from_stored(value).to_dict()
        for key, value in stored.items()
    }


def allowed(role: Optional[RolePolicy], resource, action, *, full_access_role="admin",
            view_only_role="viewer") -> bool:
    # Resolve names first so typos fail loudly whatever the role is
    resource = _resource(resource)
    action = _action(action)
    if role is None or not role.name:
        return False

    name = role.name.strip().casefold()
    if name == full_access_role.casefold():
        return True
    if name == view_only_role.casefold():
        return action is Action.VIEW
    if not role.active:
        return False
    permission_set = role.permissions.get(resource)
    return permission_set is not None and permission_set.allows(action)


def _load_role(name):
    row = Role.query.filter(db.func.lower(Role.name) == name).first()
    if row is None:
        return None
    return RolePolicy.from_stored(row.name, row.active, row.permissions)


def load_role_policy(role_name) -> Optional[RolePolicy]:
    if not role_name:
        return None
    key = str(role_name).strip().casefold()
    policy = get_cache().get_or_load(('roles', key), lambda: _load_role(key))
    if policy is None:
        # Unstored roles may still match the full-access or view-only names
        return RolePolicy(name=str(role_name).strip(), active=True)
    return policy


def check_permission(role_name, resource, action) -> bool:
    return allowed(
        load_role_policy(role_name),
        resource,
        action,
        full_access_role=current_app.config["FULL_ACCESS_ROLE"],
        view_only_role=current_app.config["VIEW_ONLY_ROLE"],
    )


def require_permission(resource, action):
    resource = _resource(resource)
    action = _action(action)

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            role_name = get_jwt().get("role")
            if not check_permission(role_name, resource, action):
                get_audit_logger().log_activity(
                    "permission_denied",
                    actor=get_jwt_identity(),
                    details={
                        "role": role_name,
                        "resource": resource.value,
                        "action": action.value,
                        "path": request.path,
                    },
                )
                raise PermissionDeniedError(resource=resource.value, action=action.value)
            return func(*args, **kwargs)
        return wrapper
    return decorator


DEFAULT_ROLES = {
    "Admin": (
        "Full access to every resource",
        {r.value: [a.value for a in Action] for r in Resource},
    ),
    "Supervisor": (
        "Runs polling day: voters, results and analytics",
        {
            "dashboard": ["view"],
            "elections": ["view"],
            "positions": ["view"],
            "candidates": ["view"],
            "voters": ["view", "add", "edit"],
            "results": ["view"],
            "dva": ["view"],
            "log": ["view"],
        },
    ),
    "Viewer": (
        "Read-only access",
        {r.value: ["view"] for r in Resource},
    ),
}


def seed_default_roles():
    """Insert the default roles that do not exist yet; returns the created names."""
    created = []
    for name, (description, permissions) in DEFAULT_ROLES.items():
        exists = Role.query.filter(db.func.lower(Role.name) == name.lower()).first()
        if exists:
            continue
        db.session.add(Role(
            name=name,
            description=description,
            active=True,
            permissions=validate_permission_map(permissions),
        ))
        created.append(name)
    if created:
        db.session.commit()
        logger.info("Seeded default roles: %s", ", ".join(created))
    return created
