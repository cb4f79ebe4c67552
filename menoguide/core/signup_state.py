from enum import Enum
from dataclasses import dataclass, field, fields, asdict
from datetime import date
from typing import Any, Dict, List, Optional


class MenopausePhase(str, Enum):
    """
    Menopause stages offered in the signup flow.
    """
    PRE_MENOPAUSE = "pre-menopause"
    PERI_MENOPAUSE = "peri-menopause"
    POST_MENOPAUSE = "post-menopause"


class WizardStatus(str, Enum):
    """
    States of the signup wizard.
    """
    EDITING = "editing"
    REVIEWING = "reviewing"
    SUBMITTING = "submitting"
    DONE = "done"


@dataclass(frozen=True)
class StepDescriptor:
    id: int
    title: str
    description: str


SIGNUP_STEPS: List[StepDescriptor] = [
    StepDescriptor(1, "Basic Information", "Tell us about yourself"),
    StepDescriptor(2, "Menopause Phase", "Select your current phase"),
    StepDescriptor(3, "Cycle Information", "Track your menstrual cycle"),
    StepDescriptor(4, "Symptoms", "Identify your symptoms"),
    StepDescriptor(5, "Personal Concerns", "Share your goals"),
    StepDescriptor(6, "Preferences", "Customize your experience"),
]


@dataclass
class CycleInfo:
    """
    Menstrual cycle details, only collected for pre-menopause.
    """
    average_cycle_length: Optional[int] = None
    period_duration: Optional[int] = None
    last_period_date: Optional[date] = None
    is_regular: Optional[bool] = None

    def is_complete(self) -> bool:
        return bool(self.average_cycle_length and self.period_duration and self.last_period_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average_cycle_length": self.average_cycle_length,
            "period_duration": self.period_duration,
            "last_period_date": self.last_period_date.isoformat() if self.last_period_date else None,
            "is_regular": self.is_regular,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CycleInfo":
        raw_date = data.get("last_period_date")
        if isinstance(raw_date, str):
            raw_date = date.fromisoformat(raw_date[:10])
        return cls(
            average_cycle_length=data.get("average_cycle_length"),
            period_duration=data.get("period_duration"),
            last_period_date=raw_date,
            is_regular=data.get("is_regular"),
        )


@dataclass
class MenopauseSymptoms:
    # common to every phase
    hot_flashes: bool = False
    night_sweats: bool = False
    mood_swings: bool = False
    fatigue: bool = False
    sleep_problems: bool = False
    brain_fog: bool = False
    weight_gain: bool = False
    vaginal_dryness: bool = False
    # pre-menopause
    irregular_periods: bool = False
    heavy_bleeding: bool = False
    # peri-menopause
    skipped_periods: bool = False
    shorter_cycles: bool = False
    # post-menopause
    bone_loss: bool = False
    heart_health: bool = False
    other_symptoms: List[str] = field(default_factory=list)

    def has_any(self) -> bool:
        return _any_selected(self, "other_symptoms")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MenopauseSymptoms":
        return _from_known_fields(cls, data)


@dataclass
class PersonalConcerns:
    sleep_quality: bool = False
    energy_levels: bool = False
    mental_health: bool = False
    relationships: bool = False
    career: bool = False
    physical_activity: bool = False
    nutrition: bool = False
    stress_management: bool = False
    other_concerns: List[str] = field(default_factory=list)

    def has_any(self) -> bool:
        return _any_selected(self, "other_concerns")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonalConcerns":
        return _from_known_fields(cls, data)


@dataclass
class UserPreferences:
    notifications: bool = False
    email_updates: bool = False
    community_access: bool = False
    data_sharing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPreferences":
        return _from_known_fields(cls, data)


def _any_selected(obj: Any, custom_field: str) -> bool:
    for f in fields(obj):
        value = getattr(obj, f.name)
        if f.name == custom_field:
            if any(item.strip() for item in value):
                return True
        elif value:
            return True
    return False


def _from_known_fields(cls, data: Dict[str, Any]):
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class SignupDraft:
    """
    Signup data accumulated across the wizard steps.

    Every field is optional while editing; validate_complete_signup decides
    whether the draft can be submitted. Field groups are replaced whole by
    their setters, nested records are never deep-merged.
    """
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    profile_image: Optional[str] = None
    menopause_phase: Optional[MenopausePhase] = None
    cycle_info: Optional[CycleInfo] = None
    symptoms: Optional[MenopauseSymptoms] = None
    concerns: Optional[PersonalConcerns] = None
    preferences: Optional[UserPreferences] = None

    def set_identity(
        self,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> "SignupDraft":
        """
        Sets the basic info fields. Arguments left as None keep the current value.
        """
        if first_name is not None:
            self.first_name = first_name
        if last_name is not None:
            self.last_name = last_name
        if email is not None:
            self.email = email
        if password is not None:
            self.password = password
        return self

    def set_profile_image(self, image_ref: Optional[str]) -> "SignupDraft":
        self.profile_image = image_ref
        return self

    def set_phase(self, phase: Optional[MenopausePhase]) -> "SignupDraft":
        self.menopause_phase = MenopausePhase(phase) if phase is not None else None
        return self

    def set_cycle_info(self, cycle_info: Optional[CycleInfo]) -> "SignupDraft":
        self.cycle_info = cycle_info
        return self

    def set_symptoms(self, symptoms: Optional[MenopauseSymptoms]) -> "SignupDraft":
        self.symptoms = symptoms
        return self

    def set_concerns(self, concerns: Optional[PersonalConcerns]) -> "SignupDraft":
        self.concerns = concerns
        return self

    def set_preferences(self, preferences: Optional[UserPreferences]) -> "SignupDraft":
        self.preferences = preferences
        return self

    def merge(self, **updates: Any) -> "SignupDraft":
        """
        Shallow top-level merge. Nested groups may be given as their record
        type or as a plain dict.

        Every value is converted before any field is assigned, so a
        ValueError (unknown field, bad phase, wrong group type, bad date)
        leaves the draft untouched.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(updates) - known)
        if unknown:
            raise ValueError(f"Unknown signup fields: {', '.join(unknown)}")

        converted = {name: _coerce_field(name, value) for name, value in updates.items()}
        for name, value in converted.items():
            setattr(self, name, value)
        return self

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "password": self.password,
            "profile_image": self.profile_image,
            "menopause_phase": self.menopause_phase.value if self.menopause_phase else None,
            "cycle_info": self.cycle_info.to_dict() if self.cycle_info else None,
            "symptoms": self.symptoms.to_dict() if self.symptoms else None,
            "concerns": self.concerns.to_dict() if self.concerns else None,
            "preferences": self.preferences.to_dict() if self.preferences else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignupDraft":
        phase = data.get("menopause_phase")
        cycle_info = data.get("cycle_info")
        symptoms = data.get("symptoms")
        concerns = data.get("concerns")
        preferences = data.get("preferences")
        return cls(
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            email=data.get("email"),
            password=data.get("password"),
            profile_image=data.get("profile_image"),
            menopause_phase=MenopausePhase(phase) if phase else None,
            cycle_info=CycleInfo.from_dict(cycle_info) if cycle_info else None,
            symptoms=MenopauseSymptoms.from_dict(symptoms) if symptoms else None,
            concerns=PersonalConcerns.from_dict(concerns) if concerns else None,
            preferences=UserPreferences.from_dict(preferences) if preferences else None,
        )


_GROUP_TYPES = {
    "cycle_info": CycleInfo,
    "symptoms": MenopauseSymptoms,
    "concerns": PersonalConcerns,
    "preferences": UserPreferences,
}


def _coerce_field(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "menopause_phase":
        return MenopausePhase(value)
    group_type = _GROUP_TYPES.get(name)
    if group_type is None:
        return value
    if isinstance(value, group_type):
        return value
    if isinstance(value, dict):
        try:
            return group_type.from_dict(value)
        except TypeError as e:
            raise ValueError(f"Invalid {name}: {e}") from e
    raise ValueError(f"{name} must be a {group_type.__name__} or a mapping, got {type(value).__name__}")


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class PasswordStrength:
    score: int
    feedback: List[str] = field(default_factory=list)
    is_strong: bool = False
