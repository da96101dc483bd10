"""
Shared pytest fixtures for loyalcard tests.

Data is seeded in the in-memory SQLite database of the ``testing`` config.
Business and customer identities mirror production: an Account row first,
then the Business (or, lazily, Customer) row sharing its id.
"""
import pytest

from loyalcard import create_app
from loyalcard.extensions import db
from loyalcard.models import Account, AccountType, Business, Customer, LoyaltyProgram


@pytest.fixture
def app():
    """Create test application."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _create_business(name, email):
    account = Account(name=name, email=email, account_type=AccountType.BUSINESS.value)
    db.session.add(account)
    db.session.flush()
    business = Business(id=account.id, name=name, email=email)
    db.session.add(business)
    db.session.commit()
    return business


@pytest.fixture
def sample_business(app):
    """Business that owns ``sample_program``."""
    with app.app_context():
        yield _create_business('Corner Coffee', 'owner@cornercoffee.test')


@pytest.fixture
def other_business(app):
    """A second, unrelated business."""
    with app.app_context():
        yield _create_business('Book Nook', 'owner@booknook.test')


@pytest.fixture
def sample_customer_account(app):
    """Customer account with no loyalty-domain Customer row yet."""
    with app.app_context():
        account = Account(
            name='Dana Rivera',
            email='dana@example.com',
            account_type=AccountType.CUSTOMER.value
        )
        db.session.add(account)
        db.session.commit()
        yield account


@pytest.fixture
def sample_customer(app):
    """Customer account that already has its Customer row."""
    with app.app_context():
        account = Account(
            name='Sam Okafor',
            email='sam@example.com',
            account_type=AccountType.CUSTOMER.value
        )
        db.session.add(account)
        db.session.flush()
        customer = Customer(id=account.id, name=account.name, email=account.email)
        db.session.add(customer)
        db.session.commit()
        yield customer


@pytest.fixture
def sample_program(app, sample_business):
    with app.app_context():
        program = LoyaltyProgram(
            business_id=sample_business.id,
            name='Coffee Club',
            description='One point per cup'
        )
        db.session.add(program)
        db.session.commit()
        yield program


@pytest.fixture
def business_headers(sample_business):
    return {'X-Business-ID': str(sample_business.id)}


@pytest.fixture
def customer_headers(sample_customer_account):
    return {'X-Account-ID': str(sample_customer_account.id)}


@pytest.fixture
def enrolled_card(app, sample_business, sample_customer_account, sample_program):
    """
    Card produced by the full request -> approve flow.

    Returns a dict of plain values (card_id, card_number, request_id,
    customer_id, program_id, business_id).
    """
    from loyalcard.services.enrollment_service import Decision, EnrollmentService

    with app.app_context():
        service = EnrollmentService()
        approval, _ = service.request_enrollment(
            business_id=sample_business.id,
            customer_id=sample_customer_account.id,
            program_id=sample_program.id
        )
        outcome = service.resolve_approval(approval.id, Decision.APPROVE)
        yield {
            'card_id': outcome.card_id,
            'card_number': outcome.card_number,
            'request_id': outcome.request_id,
            'customer_id': sample_customer_account.id,
            'program_id': sample_program.id,
            'business_id': sample_business.id,
        }
