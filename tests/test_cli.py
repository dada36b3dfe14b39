from datetime import datetime, timedelta

from models import db
from models.booking import Booking
from models.slot import Slot
from scheduling import access, catalog, reservations
from scheduling.access import PaymentPayload
from scheduling.reservations import BookingRequest
from scheduling.timeutils import utcnow


def test_generate_and_purge_slots(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["generate-slots", "ConsultorioFinanciero", "2031-11-03", "2031-11-09",
                                 "--time", "10:00", "--time", "11:00", "--price", "150"])
    assert result.exit_code == 0, result.output
    assert "created=10" in result.output
    assert Slot.query.count() == 10

    result = runner.invoke(args=["purge-slots", "ConsultorioFinanciero", "2031-11-03", "2031-11-04"])
    assert "deleted=4" in result.output


def test_generate_slots_reports_bad_input(app):
    result = app.test_cli_runner().invoke(args=["generate-slots", "Yoga", "2031-11-03", "2031-11-09",
                                                "--time", "10:00"])
    assert result.exit_code != 0
    assert "Unknown service_type" in result.output


def test_notification_feed(app):
    now = utcnow()
    access.apply_payment_update("mp-1", "approved", PaymentPayload(
        user_id="alice", service="TraderCall", transaction_at=now - timedelta(days=30),
        expiry=now - timedelta(hours=3),
    ))
    result = app.test_cli_runner().invoke(args=["notification-feed"])
    assert result.output.startswith("expired\talice\tTraderCall\t")


def test_release_expired_holds(app):
    catalog.generate("ConsultorioFinanciero", "2031-11-03", "2031-11-03", times=["10:00"])
    booking = reservations.create_booking(BookingRequest(
        user_id="alice", service_type="ConsultorioFinanciero", start=datetime(2031, 11, 3, 10, 0),
    ))
    booking.created_at = utcnow() - timedelta(hours=1)
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["release-expired-holds"])
    assert result.exit_code == 0, result.output
    assert "released=1" in result.output
    assert Booking.query.get(booking.id).status == "cancelled"
    assert Slot.query.one().available
