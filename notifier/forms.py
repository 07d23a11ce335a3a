from flask_wtf import FlaskForm
from wtforms import StringField, BooleanField
from wtforms.validators import DataRequired, Length, Optional


class JsonForm(FlaskForm):
    """Forms fed from a JSON body; operator calls authenticate with a bearer token."""

    class Meta:
        csrf = False


class KpiRunForm(JsonForm):
    dryRun = BooleanField('Dry run', default=False)
    force = BooleanField('Force', default=False)


class TestNotificationForm(JsonForm):
    userId = StringField('User ID', validators=[DataRequired(message='userId is required'), Length(max=128)])
    userName = StringField('User name', validators=[Optional(), Length(max=200)])


def first_error(form):
    for errors in form.errors.values():
        if errors:
            return errors[0]
    return 'Invalid request'
