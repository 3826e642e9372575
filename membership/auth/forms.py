import re

from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, EqualTo, Length, ValidationError

from ..forms import JsonForm

_COMMON_PASSWORDS = {
    "password",
    "12345678",
    "123456789",
    "1234567890",
    "qwerty123",
    "password1",
    "iloveyou",
    "sunshine1",
    "letmein1",
    "trustno1",
    "welcome1",
    "member123",
}


def _validate_password_strength(form, field):
    password = field.data
    if not password or len(password) < 8:
        return  # Length validator handles this
    if password.lower() in _COMMON_PASSWORDS:
        raise ValidationError("This password is too common. Please choose a stronger password.")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter.")
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain at least one lowercase letter.")
    if not re.search(r"[0-9]", password):
        raise ValidationError("Password must contain at least one number.")
    if not password.isprintable():
        raise ValidationError("Password contains invalid characters.")


class LoginForm(JsonForm):
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired()])
    remember_me = BooleanField("Remember me")


class ChangePasswordForm(JsonForm):
    current_password = PasswordField("Current Password", validators=[DataRequired()])
    new_password = PasswordField(
        "New Password",
        validators=[DataRequired(), Length(min=8, max=72), _validate_password_strength],
    )
    new_password_confirm = PasswordField(
        "Confirm New Password",
        validators=[DataRequired(), EqualTo("new_password", message="Passwords must match.")],
    )
