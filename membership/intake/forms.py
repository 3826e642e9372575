from wtforms import BooleanField, DateField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Email, Length, Optional

from ..forms import JsonForm
from ..models import MEMBERSHIP_TIERS, TIER_MEMBER, TIER_SUPPORTER

# Extra fields each tier must provide, beyond name / email / GDPR consent.
_REQUIRED_BY_TIER = {
    TIER_SUPPORTER: {
        "phone_number": "Phone number is required for supporters and members.",
        "motivation": "Motivation is required for supporters and members.",
        "city": "City is required for supporters.",
    },
    TIER_MEMBER: {
        "phone_number": "Phone number is required for supporters and members.",
        "motivation": "Motivation is required for supporters and members.",
        "full_address": "Full address is required for members.",
        "date_of_birth": "Date of birth is required for members.",
    },
}

_CONSENTS_BY_TIER = {
    TIER_SUPPORTER: {
        "supporter_statutes_consent": "Agreement with the supporter statutes is required for supporters.",
    },
    TIER_MEMBER: {
        "party_statutes_consent": "Agreement with the party statutes is required for members.",
        "no_other_party_membership": "Declaration of no other party membership is required for members.",
    },
}

# Tier-specific answers kept in applications.intake_data
_INTAKE_FIELDS_BY_TIER = {
    TIER_SUPPORTER: ("city",),
    TIER_MEMBER: ("full_address", "date_of_birth", "profession"),
}


class IntakeForm(JsonForm):
    """Public application form; which fields are required depends on ``desired_tier``."""

    name = StringField("Name", validators=[DataRequired(), Length(max=255)])
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    desired_tier = SelectField(
        "Desired Tier",
        choices=[(tier, tier) for tier in MEMBERSHIP_TIERS],
        validators=[DataRequired()],
    )
    phone_number = StringField("Phone Number", validators=[Optional(), Length(max=50)])
    motivation = TextAreaField("Motivation", validators=[Optional(), Length(max=5000)])
    gdpr_consent = BooleanField("GDPR Consent")

    # Supporter
    supporter_statutes_consent = BooleanField("Supporter Statutes Consent")
    city = StringField("City", validators=[Optional(), Length(max=255)])

    # Member
    party_statutes_consent = BooleanField("Party Statutes Consent")
    no_other_party_membership = BooleanField("No Other Party Membership")
    full_address = StringField("Full Address", validators=[Optional(), Length(max=500)])
    date_of_birth = DateField("Date of Birth", format="%Y-%m-%d", validators=[Optional()])
    profession = StringField("Profession", validators=[Optional(), Length(max=255)])

    def validate(self, extra_validators=None):
        rv = super().validate(extra_validators=extra_validators)

        if not self.gdpr_consent.data:
            self.gdpr_consent.errors.append("GDPR consent confirmation is required.")
            rv = False

        tier = self.desired_tier.data
        for field_name, message in _REQUIRED_BY_TIER.get(tier, {}).items():
            field = self[field_name]
            value = field.data
            if value is None or (isinstance(value, str) and not value.strip()):
                # DateField already reported an unparseable value
                if not field.errors:
                    field.errors.append(message)
                rv = False

        for field_name, message in _CONSENTS_BY_TIER.get(tier, {}).items():
            if not self[field_name].data:
                self[field_name].errors.append(message)
                rv = False

        return rv

    def intake_data(self):
        """Tier-specific answers as a JSON-ready dict, or None for community applicants."""
        fields = _INTAKE_FIELDS_BY_TIER.get(self.desired_tier.data)
        if not fields:
            return None
        data = {}
        for field_name in fields:
            value = self[field_name].data
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            elif isinstance(value, str):
                value = value.strip() or None
            if value is not None:
                data[field_name] = value
        return data
