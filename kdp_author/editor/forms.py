from flask_wtf import FlaskForm
from wtforms import StringField, SubmitField, TextAreaField
from wtforms.validators import InputRequired, Length


class BookSpecForm(FlaskForm):
    title = StringField(
        "Book Title",
        validators=[InputRequired(message="Add a book title."), Length(max=150)],
    )
    description = TextAreaField(
        "Book Description",
        validators=[InputRequired(message="Add a short description."), Length(max=2000)],
    )
    details = TextAreaField(
        "Synopsis & Details",
        validators=[InputRequired(message="Add a synopsis."), Length(max=20000)],
    )
    submit = SubmitField("Generate Outline")
