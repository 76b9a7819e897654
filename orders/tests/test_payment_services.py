# orders/tests/test_payment_services.py
import json
import pytest
from decimal import Decimal

import requests
from django.core.exceptions import PermissionDenied
from razorpay.errors import BadRequestError, ServerError

from orders.exceptions import (
    GatewayNotConfigured,
    GatewayValidationFailed,
    PaymentAlreadySettled,
    PaymentGatewayError,
    PaymentMethodUnavailable,
    SignatureInvalid,
)
from orders.models import Payment
from orders.payment_services import Captured, Failed, to_paise
from store.models import StoreSetting
from store.services import GATEWAY_CREDENTIALS_KEY, GatewayCredentialStore, GatewayCredentials
from orders.tests.factories import PaymentFactory, PlacedOrderFactory, sign, webhook_body


def test_to_paise_rounds_half_up():
    assert to_paise(Decimal('460.00')) == 46000
    assert to_paise(Decimal('10.005')) == 1001


@pytest.mark.django_db
class TestInitiate:

    def test_not_configured(self, gateway):
        assert gateway.is_configured() is False
        with pytest.raises(GatewayNotConfigured):
            gateway.initiate(PlacedOrderFactory())

    def test_reuses_open_gateway_order(self, gateway, online_order, razorpay_api):
        reference = gateway.initiate(online_order)

        assert reference['gateway_order_id'] == 'order_RZP001'
        assert reference['amount'] == 50000
        razorpay_api.order.create.assert_not_called()
        assert online_order.payments.count() == 1

    def test_retry_after_failure_gets_new_payment(self, gateway, gateway_credentials, razorpay_api):
        order = PlacedOrderFactory(payment_status='failed')
        PaymentFactory(order=order, status='failed', gateway_order_id='order_OLD')
        razorpay_api.order.create.return_value = {'id': 'order_NEW'}

        reference = gateway.initiate(order)

        assert reference['gateway_order_id'] == 'order_NEW'
        assert order.payments.count() == 2
        latest = order.payments.order_by('-id').first()
        assert latest.status == 'pending'
        assert latest.amount == order.total
        order.refresh_from_db()
        assert order.payment_status == 'pending'

    def test_paid_order_is_settled(self, gateway, gateway_credentials):
        order = PlacedOrderFactory(payment_status='paid')
        PaymentFactory(order=order, status='paid', transaction_id='pay_DONE')

        with pytest.raises(PaymentAlreadySettled):
            gateway.initiate(order)

    def test_cod_orders_are_not_paid_online(self, gateway, gateway_credentials):
        with pytest.raises(PaymentMethodUnavailable):
            gateway.initiate(PlacedOrderFactory(payment_method='cod'))

    def test_network_error(self, gateway, gateway_credentials, razorpay_api):
        order = PlacedOrderFactory()
        PaymentFactory(order=order, gateway_order_id='')
        razorpay_api.order.create.side_effect = requests.ConnectionError('unreachable')

        with pytest.raises(PaymentGatewayError):
            gateway.initiate(order)
        assert order.payments.get().gateway_order_id == ''

    def test_gateway_rejection(self, gateway, gateway_credentials, razorpay_api):
        order = PlacedOrderFactory()
        PaymentFactory(order=order, gateway_order_id='')
        razorpay_api.order.create.side_effect = ServerError('boom')

        with pytest.raises(PaymentGatewayError):
            gateway.initiate(order)
        assert order.payments.get().gateway_order_id == ''

    def test_client_uses_stored_credentials(self, gateway, gateway_credentials, razorpay_api):
        order = PlacedOrderFactory()
        PaymentFactory(order=order, gateway_order_id='')

        gateway.initiate(order)

        razorpay_api.opened.assert_called_once_with(('rzp_test_AbCdEfGh1234', 'key_secret_123'))


@pytest.mark.django_db
class TestVerifyCallback:

    def test_captured(self, gateway, gateway_credentials):
        body = webhook_body('payment.captured', payment_id='pay_TX001', gateway_order_id='order_RZP001', amount=46000)

        event = gateway.verify_callback(body, sign(gateway_credentials.webhook_secret, body))

        assert event == Captured(transaction_id='pay_TX001', amount=Decimal('460.00'), gateway_order_id='order_RZP001')

    def test_order_paid_counts_as_capture(self, gateway, gateway_credentials):
        body = webhook_body('order.paid')
        event = gateway.verify_callback(body, sign(gateway_credentials.webhook_secret, body))
        assert isinstance(event, Captured)

    def test_failed(self, gateway, gateway_credentials):
        body = webhook_body('payment.failed', error_description='Card declined')

        event = gateway.verify_callback(body, sign(gateway_credentials.webhook_secret, body))

        assert isinstance(event, Failed)
        assert event.reason == 'Card declined'
        assert event.gateway_order_id == 'order_RZP001'

    def test_unknown_event_is_ignored(self, gateway, gateway_credentials):
        body = json.dumps({'event': 'refund.processed', 'payload': {}}).encode()
        assert gateway.verify_callback(body, sign(gateway_credentials.webhook_secret, body)) is None

    def test_bad_signature(self, gateway, gateway_credentials):
        body = webhook_body('payment.captured')
        with pytest.raises(SignatureInvalid):
            gateway.verify_callback(body, sign('not-the-secret', body))

    def test_tampered_body(self, gateway, gateway_credentials):
        body = webhook_body('payment.captured', amount=46000)
        signature = sign(gateway_credentials.webhook_secret, body)
        with pytest.raises(SignatureInvalid):
            gateway.verify_callback(webhook_body('payment.captured', amount=100), signature)

    def test_missing_signature(self, gateway, gateway_credentials):
        with pytest.raises(SignatureInvalid):
            gateway.verify_callback(webhook_body('payment.captured'), '')

    def test_non_ascii_signature(self, gateway, gateway_credentials):
        with pytest.raises(SignatureInvalid):
            gateway.verify_callback(webhook_body('payment.captured'), 'é' * 64)

    def test_falls_back_to_key_secret(self, gateway):
        GatewayCredentialStore().save(GatewayCredentials(key_id='rzp_live_XyZ12345abcd', key_secret='only_secret'))
        body = webhook_body('payment.captured')

        assert isinstance(gateway.verify_callback(body, sign('only_secret', body)), Captured)

    def test_malformed_payload(self, gateway, gateway_credentials):
        body = b'not json'
        with pytest.raises(PaymentGatewayError):
            gateway.verify_callback(body, sign(gateway_credentials.webhook_secret, body))

    @pytest.mark.parametrize('payload', [
        [],
        'payment',
        {'payment': 'pay_TX001'},
        {'payment': {'entity': ['pay_TX001']}},
    ])
    def test_payload_of_the_wrong_shape(self, gateway, gateway_credentials, payload):
        body = json.dumps({'event': 'payment.captured', 'payload': payload}).encode()

        with pytest.raises(PaymentGatewayError):
            gateway.verify_callback(body, sign(gateway_credentials.webhook_secret, body))

    @pytest.mark.parametrize('amount', ['lots', 'NaN', {'value': 1}])
    def test_non_numeric_amount(self, gateway, gateway_credentials, amount):
        body = webhook_body('payment.captured', amount=amount)

        with pytest.raises(PaymentGatewayError):
            gateway.verify_callback(body, sign(gateway_credentials.webhook_secret, body))


@pytest.mark.django_db
class TestVerifyCheckout:

    def test_captured(self, gateway, gateway_credentials, razorpay_api):
        razorpay_api.payment.fetch.return_value = {
            'id': 'pay_CB1', 'order_id': 'order_RZP001', 'status': 'captured', 'amount': 50000,
        }
        signature = sign(gateway_credentials.key_secret, 'order_RZP001|pay_CB1')

        event = gateway.verify_checkout('order_RZP001', 'pay_CB1', signature)

        assert event == Captured(transaction_id='pay_CB1', amount=Decimal('500.00'), gateway_order_id='order_RZP001')
        razorpay_api.payment.fetch.assert_called_once_with('pay_CB1')

    def test_bad_signature_never_calls_gateway(self, gateway, gateway_credentials, razorpay_api):
        with pytest.raises(SignatureInvalid):
            gateway.verify_checkout('order_RZP001', 'pay_CB1', 'deadbeef')
        razorpay_api.payment.fetch.assert_not_called()

    def test_non_ascii_signature(self, gateway, gateway_credentials, razorpay_api):
        with pytest.raises(SignatureInvalid):
            gateway.verify_checkout('order_RZP001', 'pay_CB1', 'é' * 64)
        razorpay_api.payment.fetch.assert_not_called()

    def test_authorized_only(self, gateway, gateway_credentials, razorpay_api):
        razorpay_api.payment.fetch.return_value = {
            'id': 'pay_CB2', 'order_id': 'order_RZP001', 'status': 'authorized', 'amount': 50000,
        }
        signature = sign(gateway_credentials.key_secret, 'order_RZP001|pay_CB2')

        assert gateway.verify_checkout('order_RZP001', 'pay_CB2', signature) is None

    def test_payment_for_another_order(self, gateway, gateway_credentials, razorpay_api):
        razorpay_api.payment.fetch.return_value = {
            'id': 'pay_CB3', 'order_id': 'order_OTHER', 'status': 'captured', 'amount': 50000,
        }
        signature = sign(gateway_credentials.key_secret, 'order_RZP001|pay_CB3')

        with pytest.raises(SignatureInvalid):
            gateway.verify_checkout('order_RZP001', 'pay_CB3', signature)


@pytest.mark.django_db
class TestRefund:

    def test_refund_posts_amount_in_paise(self, gateway, gateway_credentials, razorpay_api):
        payment = PaymentFactory(status='paid', transaction_id='pay_R1')
        razorpay_api.payment.refund.return_value = {'id': 'rfnd_1', 'amount': 20000}

        refund = gateway.refund(payment, Decimal('200.00'))

        assert refund['id'] == 'rfnd_1'
        razorpay_api.payment.refund.assert_called_once_with('pay_R1', {'amount': 20000})

    def test_rejected_refund(self, gateway, gateway_credentials, razorpay_api):
        payment = PaymentFactory(status='paid', transaction_id='pay_R2')
        razorpay_api.payment.refund.side_effect = BadRequestError('The refund amount is invalid')

        with pytest.raises(PaymentGatewayError):
            gateway.refund(payment, Decimal('200.00'))


@pytest.mark.django_db
class TestConnect:

    def test_only_admins(self, gateway, customer):
        with pytest.raises(PermissionDenied):
            gateway.connect('rzp_test_AbCdEfGh1234', 'secret', actor=customer)

    def test_bad_credentials_are_not_stored(self, gateway, staff_user, razorpay_api):
        razorpay_api.payment.all.side_effect = BadRequestError('Authentication failed')

        with pytest.raises(GatewayValidationFailed):
            gateway.connect('rzp_test_AbCdEfGh1234', 'wrong', actor=staff_user)

        assert gateway.is_configured() is False
        assert gateway.status()['connected'] is False

    def test_required_fields(self, gateway, staff_user, razorpay_api):
        with pytest.raises(GatewayValidationFailed):
            gateway.connect('', '  ', actor=staff_user)
        razorpay_api.payment.all.assert_not_called()

    def test_connect_and_disconnect(self, gateway, staff_user, razorpay_api):
        razorpay_api.payment.all.return_value = {'entity': 'collection', 'items': []}

        status = gateway.connect(' rzp_test_AbCdEfGh1234 ', 'secret_1', webhook_secret='wh_1', actor=staff_user)

        razorpay_api.payment.all.assert_called_once_with({'count': 1})
        razorpay_api.opened.assert_called_once_with(('rzp_test_AbCdEfGh1234', 'secret_1'))

        assert status['connected'] is True
        assert status['key_id_preview'] == 'rzp_test...1234'
        assert status['is_test_mode'] is True
        assert 'secret_1' not in json.dumps(status)
        assert gateway.is_configured() is True

        status = gateway.disconnect(actor=staff_user)

        assert status['connected'] is False
        assert gateway.is_configured() is False
        assert not StoreSetting.objects.filter(key=GATEWAY_CREDENTIALS_KEY).exists()
        with pytest.raises(GatewayNotConfigured):
            gateway.initiate(PlacedOrderFactory())

    def test_network_error_on_connect(self, gateway, staff_user, razorpay_api):
        razorpay_api.payment.all.side_effect = requests.Timeout('slow')
        with pytest.raises(PaymentGatewayError):
            gateway.connect('rzp_test_AbCdEfGh1234', 'secret_1', actor=staff_user)
        assert not Payment.objects.exists()
        assert gateway.is_configured() is False
