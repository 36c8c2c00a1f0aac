import pytest

from conftest import get_user
from onboarding.constants import Label
from onboarding.extensions import db
from onboarding.services.notifications import NotificationDispatcher, NotificationEvent
from onboarding.services.registry import get_notifier, get_repository


@pytest.fixture()
def notifier(ctx):
    return get_notifier()


def emails(recipients):
    return [(r.email, r.template_key) for r in recipients]


def test_purchaser_submitted_goes_to_opted_in_finance(notifier, create_request):
    req = create_request(self_fill=True)
    assert emails(notifier.recipients_for(NotificationEvent.PURCHASER_SUBMITTED, req)) == [
        ("finance@example.com", "finance_notification"),
    ]


def test_inactive_staff_get_nothing(notifier, create_request):
    get_user("erp@example.com").is_active = False
    db.session.commit()

    req = create_request(self_fill=True)
    assert notifier.recipients_for(NotificationEvent.FINANCE_SUBMITTED, req) == []


def test_supplier_submitted_notifies_supplier_and_creator(notifier, create_request):
    req = create_request(supplier_email="acme@example.com")
    assert emails(notifier.recipients_for(NotificationEvent.SUPPLIER_SUBMITTED, req)) == [
        ("acme@example.com", "supplier_confirmation"),
        ("inkoper@example.com", "purchaser_notification"),
    ]


def test_creator_with_several_roles_gets_one_completion_mail(notifier, create_request):
    creator = get_user("inkoper@example.com")
    creator.set_roles({*creator.roles, *get_user("finance@example.com").roles})
    db.session.commit()

    req = create_request(self_fill=True)
    recipients = notifier.recipients_for(NotificationEvent.ERP_SUBMITTED, req)
    assert sorted(emails(recipients)) == [
        ("finance@example.com", "completion"),
        ("inkoper@example.com", "completion"),
    ]


def test_invitation_variables_use_the_label(notifier, create_request, mailer):
    req = create_request(label=Label.PFC, supplier_email="pfc@example.com")
    mailer.clear()

    (outcome,) = notifier.dispatch(NotificationEvent.INVITATION, req)

    assert outcome.delivered
    (message,) = mailer.outbox
    assert "Parfum Flower Company" in message.body
    assert f"http://testserver/supplier/{req.invitation_token}" in message.body


def test_one_failing_recipient_does_not_stop_the_rest(ctx, create_request):
    class FlakySender:
        def __init__(self):
            self.sent = []

        def send(self, to, template_key, variables, language="nl"):
            if to == "acme@example.com":
                raise ConnectionError("mailbox unreachable")
            self.sent.append(to)
            return "ok"

    req = create_request(supplier_email="acme@example.com")
    sender = FlakySender()
    notifier = NotificationDispatcher(sender, get_repository(), app_url="http://testserver")

    outcomes = notifier.dispatch(NotificationEvent.SUPPLIER_SUBMITTED, req)

    assert [o.delivered for o in outcomes] == [False, True]
    assert outcomes[0].error == "mailbox unreachable"
    assert sender.sent == ["inkoper@example.com"]


def test_account_mail_ignores_opt_out(notifier, mailer):
    user = get_user("finance.quiet@example.com")

    outcome = notifier.notify_account(user, "password_reset", "tok123")

    assert outcome.delivered
    (message,) = mailer.outbox
    assert message.to == "finance.quiet@example.com"
    assert "http://testserver/reset-password/tok123" in message.body


def test_unknown_account_template(notifier):
    with pytest.raises(ValueError):
        notifier.notify_account(get_user("admin@example.com"), "welcome", "tok")
