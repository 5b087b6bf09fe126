"""
Role rules for UniClinic.
One table describes, per role, the attributes a user must and may carry,
the default permission set and the field used as a human-facing identifier.
Everything that needs role knowledge consults this module.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Set, Tuple

from ..models.user import UserRole

# Permission constants
PERM_FULL_ACCESS = "full_access"
PERM_VIEW_OWN_PROFILE = "view_own_profile"
PERM_UPDATE_OWN_PROFILE = "update_own_profile"
PERM_VIEW_MEDICAL_HISTORY = "view_medical_history"
PERM_SCHEDULE_APPOINTMENTS = "schedule_appointments"
PERM_GET_DOCTOR_AVAILABILITY = "get_doctor_availability"
PERM_VIEW_PATIENTS = "view_patients"
PERM_MANAGE_PATIENTS = "manage_patients"
PERM_UPDATE_PATIENT_INFO = "update_patient_info"
PERM_VIEW_MEDICAL_RECORDS = "view_medical_records"
PERM_CREATE_MEDICAL_RECORDS = "create_medical_records"
PERM_PRESCRIBE_MEDICATION = "prescribe_medication"

_PATIENT_PERMISSIONS = frozenset({
    PERM_VIEW_OWN_PROFILE,
    PERM_UPDATE_OWN_PROFILE,
    PERM_VIEW_MEDICAL_HISTORY,
    PERM_SCHEDULE_APPOINTMENTS,
    PERM_GET_DOCTOR_AVAILABILITY,
})


@dataclass(frozen=True)
class RoleRule:
    required: Tuple[str, ...]
    optional: Tuple[str, ...]
    default_permissions: FrozenSet[str]
    display_field: str

    @property
    def fields(self) -> Tuple[str, ...]:
        return self.required + self.optional


# Role rule table
ROLE_RULES: dict = {
    UserRole.STUDENT: RoleRule(
        required=("student_id", "department"),
        optional=(),
        default_permissions=_PATIENT_PERMISSIONS,
        display_field="student_id",
    ),
    UserRole.DOCTOR: RoleRule(
        required=("medical_license_number", "specialization"),
        optional=("staff_no",),
        default_permissions=frozenset({
            PERM_VIEW_OWN_PROFILE,
            PERM_UPDATE_OWN_PROFILE,
            PERM_VIEW_PATIENTS,
            PERM_MANAGE_PATIENTS,
            PERM_VIEW_MEDICAL_RECORDS,
            PERM_CREATE_MEDICAL_RECORDS,
            PERM_PRESCRIBE_MEDICATION,
        }),
        display_field="medical_license_number",
    ),
    UserRole.CLINICAL_STAFF: RoleRule(
        required=("staff_no", "department"),
        optional=(),
        default_permissions=frozenset({
            PERM_VIEW_OWN_PROFILE,
            PERM_UPDATE_OWN_PROFILE,
            PERM_VIEW_PATIENTS,
            PERM_UPDATE_PATIENT_INFO,
            PERM_SCHEDULE_APPOINTMENTS,
            PERM_VIEW_MEDICAL_RECORDS,
        }),
        display_field="staff_no",
    ),
    UserRole.ACADEMIC_STAFF: RoleRule(
        required=("staff_no", "faculty"),
        optional=("department",),
        default_permissions=_PATIENT_PERMISSIONS,
        display_field="staff_no",
    ),
    UserRole.ADMIN: RoleRule(
        required=("staff_no",),
        optional=(),
        default_permissions=frozenset({PERM_FULL_ACCESS}),
        display_field="staff_no",
    ),
}

# Every role-specific attribute known to any role
ALL_ROLE_FIELDS: FrozenSet[str] = frozenset(
    field for rule in ROLE_RULES.values() for field in rule.fields
)


def rule_for(role: str) -> Optional[RoleRule]:
    return ROLE_RULES.get(role)


def is_patient_role(role: str) -> bool:
    return role in UserRole.PATIENT_ROLES


def resolve_permissions(role: str, custom_permissions: Optional[Iterable[str]] = None) -> Set[str]:
    """Admin resolves to full access only; everyone else gets role defaults plus overrides."""
    if role == UserRole.ADMIN:
        return {PERM_FULL_ACCESS}
    rule = ROLE_RULES.get(role)
    permissions = set(rule.default_permissions) if rule else set()
    permissions.update(custom_permissions or ())
    return permissions


def has_permission(user, permission: str) -> bool:
    """Check if a user holds a specific permission."""
    if user.role == UserRole.ADMIN:
        return True
    return permission in resolve_permissions(user.role, user.custom_permissions)


def display_identifier(user) -> str:
    rule = ROLE_RULES.get(user.role)
    if rule is None:
        return user.email
    return getattr(user, rule.display_field, None) or user.email
