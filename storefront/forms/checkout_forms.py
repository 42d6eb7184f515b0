"""
Checkout form.
"""
from flask_wtf import FlaskForm
from wtforms import RadioField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional, Regexp, ValidationError

from storefront.models import DeliveryMethod

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class CheckoutForm(FlaskForm):
    """Customer details. The address block is only required for home delivery."""

    customer_name = StringField(
        'Nom complet',
        validators=[
            DataRequired(message='Le nom est requis'),
            Length(min=2, max=100, message='Le nom doit contenir entre 2 et 100 caractères')
        ]
    )

    customer_email = StringField(
        'Email',
        validators=[
            DataRequired(message="L'email est requis"),
            Length(max=255),
            Regexp(EMAIL_PATTERN, message='Email invalide')
        ]
    )

    customer_phone = StringField(
        'Téléphone',
        validators=[
            DataRequired(message='Le téléphone est requis'),
            Length(min=10, max=20, message='Numéro de téléphone invalide')
        ]
    )

    delivery_method = RadioField(
        'Mode de livraison',
        choices=[
            (DeliveryMethod.PICKUP.value, 'Retrait en boutique'),
            (DeliveryMethod.DELIVERY.value, 'Livraison à domicile'),
        ],
        default=DeliveryMethod.PICKUP.value,
        validators=[DataRequired(message='Mode de livraison invalide')]
    )

    shipping_address = StringField('Adresse', validators=[Length(max=255)])
    shipping_city = StringField('Ville', validators=[Length(max=100)])
    shipping_postal_code = StringField('Code postal', validators=[Length(max=10)])

    notes = TextAreaField(
        'Notes',
        validators=[Optional(), Length(max=500, message='500 caractères maximum')]
    )

    def _require_for_delivery(self, field, label):
        if self.delivery_method.data == DeliveryMethod.DELIVERY.value and not (field.data or '').strip():
            raise ValidationError(f'{label} requis pour la livraison')

    def validate_shipping_address(self, field):
        self._require_for_delivery(field, 'Adresse')

    def validate_shipping_city(self, field):
        self._require_for_delivery(field, 'Ville')

    def validate_shipping_postal_code(self, field):
        self._require_for_delivery(field, 'Code postal')
