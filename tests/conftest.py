"""
pytest configuration and fixtures

Services are wired to the in-memory fakes from ``fakes.py``; the HTTP client
runs the real FastAPI app with authentication and service getters overridden.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app import create_app
from services.billing_service import BillingService, get_billing_service
from services.cases_service import CasesService, get_cases_service
from services.fines_service import FinesService, get_fines_service
from services.lawyers_service import LawyersService, get_lawyers_service
from services.matching_service import LawyerMatcher
from services.messages_service import MessagesService, get_messages_service
from services.payments_service import PaymentsService, get_payments_service
from services.users_service import UsersService, get_users_service
from services.webhook_service import StripeWebhookService, get_webhook_service
from utils.auth import AuthContext, get_current_user
from fakes import (
    FakeBusinessRepository, FakeCasesRepository, FakeDatabase, FakeFinesRepository, FakeGateway,
    FakeInvoicesRepository, FakeLawyersRepository, FakeMessagesRepository, FakeNotifications,
    FakePaymentsRepository, FakeUsersRepository, FakeWebhookEventsRepository, make_lawyer, make_plan,
    make_user
)


# Actors

@pytest.fixture
def client_user():
    return make_user()


@pytest.fixture
def lawyer_user():
    return make_user()


@pytest.fixture
def client_actor(client_user):
    return AuthContext(user_id=client_user.id, email=client_user.email, role="user")


@pytest.fixture
def lawyer_actor(lawyer_user):
    return AuthContext(user_id=lawyer_user.id, email=lawyer_user.email, role="lawyer")


@pytest.fixture
def admin_actor():
    return AuthContext(user_id="admin-1", email="ops@offtherecord.example", role="admin")


@pytest.fixture
def billing_actor():
    return AuthContext(user_id="finance-1", email="finance@offtherecord.example", role="business_support")


# Fakes

@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def users_repo(client_user, lawyer_user):
    return FakeUsersRepository(client_user, lawyer_user)


@pytest.fixture
def lawyer(lawyer_user):
    """Approved WA speeding lawyer owned by ``lawyer_user``"""
    return make_lawyer(user_id=lawyer_user.id, email=lawyer_user.email)


@pytest.fixture
def lawyers_repo(lawyer):
    return FakeLawyersRepository(lawyer)


@pytest.fixture
def cases_repo():
    return FakeCasesRepository()


@pytest.fixture
def payments_repo():
    return FakePaymentsRepository()


@pytest.fixture
def invoices_repo():
    return FakeInvoicesRepository()


@pytest.fixture
def messages_repo():
    return FakeMessagesRepository()


@pytest.fixture
def business_repo():
    return FakeBusinessRepository(make_plan(), make_plan(id="plan_unlimited", name="Unlimited",
                                                         monthly_price=2000, setup_fee=0,
                                                         fines_limit=None, employees_limit=None))


@pytest.fixture
def fines_repo():
    return FakeFinesRepository()


@pytest.fixture
def events_repo():
    return FakeWebhookEventsRepository()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifications():
    return FakeNotifications()


# Services

@pytest.fixture
def matcher(db, lawyers_repo, cases_repo, notifications):
    return LawyerMatcher(db, lawyers_repo, cases_repo, notifications)


@pytest.fixture
def cases_service(db, users_repo, lawyers_repo, cases_repo, matcher, notifications):
    return CasesService(db, users_repo, lawyers_repo, cases_repo, matcher, notifications)


@pytest.fixture
def payments_service(db, payments_repo, invoices_repo, cases_repo, lawyers_repo, users_repo,
                     gateway, notifications):
    return PaymentsService(
        db, payments_repo, invoices_repo, cases_repo, lawyers_repo, users_repo, gateway, notifications,
        fee_percent=20
    )


@pytest.fixture
def billing_service(db, business_repo, gateway, notifications, fines_repo):
    return BillingService(db, business_repo, gateway, notifications, fines_repo)


@pytest.fixture
def fines_service(db, fines_repo):
    return FinesService(db, fines_repo)


@pytest.fixture
def users_service(db, users_repo):
    return UsersService(db, users_repo)


@pytest.fixture
def lawyers_service(db, lawyers_repo, cases_repo):
    return LawyersService(db, lawyers_repo, cases_repo)


@pytest.fixture
def messages_service(db, messages_repo, cases_repo, lawyers_repo):
    return MessagesService(db, messages_repo, cases_repo, lawyers_repo)


@pytest.fixture
def webhook_service(db, events_repo, payments_service, billing_service):
    return StripeWebhookService(db, events_repo, payments_service, billing_service)


# HTTP

@pytest.fixture
def app(cases_service, payments_service, billing_service, lawyers_service, messages_service,
        webhook_service, fines_service, users_service, client_actor):
    """App without lifespan; ``app.state.actor`` decides who is calling"""
    application = create_app(use_lifespan=False)
    application.state.actor = client_actor

    async def current_actor():
        return application.state.actor

    application.dependency_overrides.update({
        get_current_user: current_actor,
        get_cases_service: lambda: cases_service,
        get_payments_service: lambda: payments_service,
        get_billing_service: lambda: billing_service,
        get_lawyers_service: lambda: lawyers_service,
        get_messages_service: lambda: messages_service,
        get_webhook_service: lambda: webhook_service,
        get_fines_service: lambda: fines_service,
        get_users_service: lambda: users_service,
    })
    return application


@pytest_asyncio.fixture
async def http(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
