from datetime import datetime

from wtforms import Field, Form, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional

from ..forms import JsonForm
from ..models import APPLICATION_STATUSES, DEFAULT_ROLES, MEMBERSHIP_TIERS
from .service import MAX_PER_PAGE


class IsoDateTimeField(Field):
    """Accepts ISO 8601 timestamps such as ``2026-11-02T14:30:00Z``; offsets are kept."""

    def _value(self):
        return self.data.isoformat() if self.data else ""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ""):
            self.data = None
            return
        raw = str(valuelist[0]).strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            self.data = datetime.fromisoformat(raw)
        except ValueError as exc:
            self.data = None
            raise ValueError(self.gettext("Not a valid ISO 8601 date and time.")) from exc


class ScheduleCallForm(JsonForm):
    call_scheduled_at = IsoDateTimeField("Call Time", validators=[DataRequired()])


class DecisionForm(JsonForm):
    decision_notes = TextAreaField("Decision Notes", validators=[Optional(), Length(max=5000)])


class ApplicationQueryForm(Form):
    """Filters for the staff listing, read from the query string."""

    status = SelectField("Status", choices=[("", "Any")] + [(s, s) for s in APPLICATION_STATUSES], default="")
    tier = SelectField("Tier", choices=[("", "Any")] + [(t, t) for t in MEMBERSHIP_TIERS], default="")
    search = StringField("Search", validators=[Optional(), Length(max=255)])
    page = IntegerField("Page", default=1, validators=[Optional(), NumberRange(min=1)])
    per_page = IntegerField("Per Page", default=10, validators=[Optional(), NumberRange(min=1, max=MAX_PER_PAGE)])


class UserQueryForm(Form):
    role = SelectField("Role", choices=[("", "Any")] + [(slug, name) for slug, name, _ in DEFAULT_ROLES], default="")
    search = StringField("Search", validators=[Optional(), Length(max=255)])
    page = IntegerField("Page", default=1, validators=[Optional(), NumberRange(min=1)])
    per_page = IntegerField("Per Page", default=10, validators=[Optional(), NumberRange(min=1, max=MAX_PER_PAGE)])
