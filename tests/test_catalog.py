from datetime import date, datetime, timedelta

import pytest

from models import db
from models.booking import Booking
from models.schedule import ScheduleEntry, ScheduleTemplate
from models.slot import Slot
from scheduling import catalog, reservations
from scheduling.errors import FormatError

SERVICE = "ConsultorioFinanciero"
TIMES = ["10:00", "11:00", "12:00"]


def saturdays(start, end):
    return catalog.generate(SERVICE, start, end, times=TIMES, price=150, duration=60,
                            skip_weekends=False, weekdays=[5])


def add_schedule(service_type, entries):
    template = ScheduleTemplate(service_type=service_type, title=service_type)
    db.session.add(template)
    db.session.flush()
    for day_of_week, start_time, duration, price in entries:
        db.session.add(ScheduleEntry(template_id=template.id, day_of_week=day_of_week,
                                     start_time=start_time, duration=duration, price=price))
    db.session.commit()
    return template


def test_generate_saturdays_two_weeks(app):
    result = saturdays("2025-11-08", "2025-11-15")
    assert result.created == 6
    assert result.skipped == 0
    assert result.errors == 0
    rows = Slot.query.order_by(Slot.date, Slot.time).all()
    assert {r.date for r in rows} == {date(2025, 11, 8), date(2025, 11, 15)}
    assert all(r.price == 150 and r.duration == 60 and r.available for r in rows)


def test_generate_saturdays_including_first_of_month(app):
    # 2025-11-01 is itself a Saturday
    result = saturdays("2025-11-01", "2025-11-15")
    assert result.created == 9
    assert Slot.query.count() == 9


def test_generate_is_idempotent_with_skip_existing(app):
    saturdays("2025-11-08", "2025-11-15")
    again = saturdays("2025-11-08", "2025-11-15")
    assert again.created == 0
    assert again.skipped == 6
    assert Slot.query.count() == 6


def test_generate_without_skip_existing_counts_duplicates_as_errors(app):
    saturdays("2025-11-08", "2025-11-08")
    result = catalog.generate(SERVICE, "2025-11-08", "2025-11-08", times=TIMES,
                              skip_weekends=False, skip_existing=False)
    assert result.created == 0
    assert result.errors == 3
    assert result.to_dict()["details"]["error_slots"][0] == "2025-11-08 10:00"


def test_generate_skips_weekends_by_default(app):
    result = catalog.generate(SERVICE, "2025-11-03", "2025-11-09", times=["10:00"])
    assert result.created == 5


def test_generate_rejects_bad_input(app):
    with pytest.raises(FormatError):
        catalog.generate(SERVICE, "2025-11-09", "2025-11-03", times=["10:00"])
    with pytest.raises(FormatError):
        catalog.generate("Yoga", "2025-11-03", "2025-11-09", times=["10:00"])
    with pytest.raises(FormatError):
        catalog.generate(SERVICE, "2025-11-03", "2025-11-09", times=["25:00"])
    with pytest.raises(FormatError):
        catalog.generate(SERVICE, "2025-11-03", "2025-11-09")


def test_generate_from_weekly_schedule(app):
    add_schedule(SERVICE, [(0, "09:00", 45, 200), (2, "15:00", 60, 300)])
    result = catalog.generate(SERVICE, "2025-11-03", "2025-11-09")
    assert result.created == 2
    monday = Slot.query.filter_by(date=date(2025, 11, 3)).one()
    assert (monday.time, monday.duration, monday.price) == ("09:00", 45, 200)


def test_list_available_applies_buffer_and_groups_by_date(app):
    catalog.generate(SERVICE, "2025-11-03", "2025-11-04", times=TIMES)

    days = catalog.list_available(SERVICE, now=datetime(2025, 11, 3, 9, 50))
    assert [d.date for d in days] == [date(2025, 11, 3), date(2025, 11, 4)]
    assert days[0].times == TIMES

    days = catalog.list_available(SERVICE, now=datetime(2025, 11, 3, 9, 56))
    assert days[0].times == ["11:00", "12:00"]


def test_list_available_excludes_reserved_and_honours_limit(app):
    catalog.generate(SERVICE, "2025-11-03", "2025-11-04", times=TIMES)
    booking = Booking(user_id="bob", service_type=SERVICE, resource=SERVICE,
                      start_at=datetime(2025, 11, 3, 10), end_at=datetime(2025, 11, 3, 11), duration=60)
    db.session.add(booking)
    db.session.commit()
    reservations.reserve("2025-11-03", "10:00", SERVICE, "bob", booking.id)

    days = catalog.list_available(SERVICE, now=datetime(2025, 11, 1, 8, 0), limit=3)
    assert days[0].times == ["11:00", "12:00"]
    assert days[1].times == ["10:00"]
    assert days[0].to_dict()["available"] == 2


def test_list_available_from_date(app):
    catalog.generate(SERVICE, "2025-11-03", "2025-11-05", times=["10:00"])
    days = catalog.list_available(SERVICE, from_date="2025-11-05", now=datetime(2025, 11, 1, 8, 0))
    assert [d.date for d in days] == [date(2025, 11, 5)]


def test_derive_from_schedule_hides_conflicting_times(app):
    add_schedule(SERVICE, [(0, "10:00", 60, 100), (0, "14:00", 60, 100)])
    db.session.add(Booking(user_id="bob", service_type=SERVICE, resource=SERVICE,
                           start_at=datetime(2025, 11, 3, 10, 30), end_at=datetime(2025, 11, 3, 11, 30),
                           duration=60))
    db.session.commit()

    days = catalog.derive_from_schedule(SERVICE, start_date="2025-11-03", days=8,
                                        now=datetime(2025, 11, 2, 12, 0))
    assert [(d.date, d.times) for d in days] == [
        (date(2025, 11, 3), ["14:00"]),
        (date(2025, 11, 10), ["10:00", "14:00"]),
    ]
    assert Slot.query.count() == 0


def test_derive_from_schedule_ignores_cancelled_bookings(app):
    add_schedule(SERVICE, [(0, "10:00", 60, 100)])
    db.session.add(Booking(user_id="bob", service_type=SERVICE, resource=SERVICE, status="cancelled",
                           start_at=datetime(2025, 11, 3, 10), end_at=datetime(2025, 11, 3, 11), duration=60))
    db.session.commit()
    days = catalog.derive_from_schedule(SERVICE, start_date="2025-11-03", days=1,
                                        now=datetime(2025, 11, 2, 12, 0))
    assert days[0].times == ["10:00"]


def test_weekly_commitments_share_a_mapped_resource(app):
    app.config["RESOURCE_BY_SERVICE"] = {SERVICE: "advisor", "CuentaAsesorada": "advisor"}
    add_schedule("CuentaAsesorada", [(1, "10:00", 60, 100)])
    found = catalog.weekly_commitments("advisor", 1)
    assert [(r.day, r.start, r.end) for r in found] == [(1, 600, 660)]
    assert catalog.weekly_commitments(SERVICE, 1) == []


def test_purge_slots_keeps_reserved(app):
    catalog.generate(SERVICE, "2025-11-03", "2025-11-03", times=TIMES)
    booking = Booking(user_id="bob", service_type=SERVICE, resource=SERVICE,
                      start_at=datetime(2025, 11, 3, 10), end_at=datetime(2025, 11, 3, 11), duration=60)
    db.session.add(booking)
    db.session.commit()
    reservations.reserve(date(2025, 11, 3), "10:00", SERVICE, "bob", booking.id)

    assert catalog.purge_slots(SERVICE, "2025-11-01", "2025-11-30") == 2
    remaining = Slot.query.one()
    assert remaining.booking_id == booking.id


def test_commitments_on_is_scoped_to_day_and_resource(app):
    for start in (datetime(2025, 11, 3, 10), datetime(2025, 11, 5, 10)):
        db.session.add(Booking(user_id="bob", service_type=SERVICE, resource=SERVICE, start_at=start,
                               end_at=start + timedelta(minutes=60), duration=60))
    db.session.add(Booking(user_id="bob", service_type="SwingTrading", resource="SwingTrading",
                           start_at=datetime(2025, 11, 3, 10), end_at=datetime(2025, 11, 3, 11), duration=60))
    db.session.commit()
    found = catalog.commitments_on(SERVICE, date(2025, 11, 3))
    assert len(found) == 1
    assert found[0].to_dict()["start"] == "10:00"


def test_booking_past_midnight_blocks_next_morning(app):
    start = datetime(2025, 11, 2, 23, 30)
    db.session.add(Booking(user_id="bob", service_type=SERVICE, resource=SERVICE, start_at=start,
                           end_at=start + timedelta(minutes=120), duration=120))
    db.session.commit()

    found = catalog.commitments_on(SERVICE, date(2025, 11, 3))
    assert [(r.start, r.end) for r in found] == [(-30, 90)]

    report = reservations.check_conflicts(SERVICE, datetime(2025, 11, 3, 0, 30), 60)
    assert not report.is_valid
    assert report.conflicts[0].to_dict()["start"] == "23:30"
    assert report.conflicts[0].to_dict()["end"] == "01:30"

    # the evening before sees it too
    assert not reservations.check_conflicts(SERVICE, datetime(2025, 11, 2, 22, 30), 60).is_valid
