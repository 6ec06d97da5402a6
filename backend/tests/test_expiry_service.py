"""
Expiry sweeper tests: bulk expiry, idempotence, placeholders untouched,
and the scheduler job wrapper.
"""

from datetime import datetime, timedelta

from bookstack.extensions import db
from bookstack.models import EntitlementRecord
from bookstack.models.entitlements import ENTITLEMENT_ACTIVE, ENTITLEMENT_COMPLETED, ENTITLEMENT_EXPIRED
from bookstack import scheduler
from bookstack.scheduler import run_sweep_job, shutdown_expiry_scheduler, start_expiry_scheduler
from bookstack.services import entitlement_service, quota_service
from bookstack.services.expiry_service import sweep_expired_entitlements


NOW = datetime(2026, 3, 15, 12, 0)


def _statuses(user_id):
    db.session.expire_all()
    return {
        r.title_id: r.status
        for r in db.session.query(EntitlementRecord).filter_by(user_id=user_id).all()
    }


class TestSweep:

    def test_expires_only_lapsed_active_records(self, reader, make_title):
        lapsed, live, done = make_title(), make_title(), make_title()
        quota_service.request_entitlement(reader.id, lapsed.id, now=NOW - timedelta(days=20))
        quota_service.request_entitlement(reader.id, live.id, now=NOW - timedelta(days=1))
        quota_service.request_entitlement(reader.id, done.id, now=NOW - timedelta(days=20))
        entitlement_service.save_progress(reader.id, done.id, status=ENTITLEMENT_COMPLETED, now=NOW)
        db.session.commit()

        result = sweep_expired_entitlements(now=NOW)

        assert result == {"expired_count": 1}
        assert _statuses(reader.id) == {
            lapsed.id: ENTITLEMENT_EXPIRED,
            live.id: ENTITLEMENT_ACTIVE,
            done.id: ENTITLEMENT_COMPLETED,
        }

    def test_idempotent(self, reader, make_title):
        quota_service.request_entitlement(reader.id, make_title().id, now=NOW - timedelta(days=20))

        assert sweep_expired_entitlements(now=NOW) == {"expired_count": 1}
        assert sweep_expired_entitlements(now=NOW) == {"expired_count": 0}

    def test_five_lapsed_and_five_live(self, reader, make_title):
        for days_ago in range(1, 6):
            entitlement_service.insert_grant(
                reader.id, make_title().id, now=NOW - timedelta(days=14 + days_ago), duration_days=14
            )
            entitlement_service.insert_grant(
                reader.id, make_title().id, now=NOW - timedelta(days=days_ago), duration_days=14
            )
        db.session.commit()

        assert sweep_expired_entitlements(now=NOW) == {"expired_count": 5}
        assert sweep_expired_entitlements(now=NOW) == {"expired_count": 0}
        statuses = list(_statuses(reader.id).values())
        assert statuses.count(ENTITLEMENT_EXPIRED) == 5
        assert statuses.count(ENTITLEMENT_ACTIVE) == 5

    def test_exact_expiry_instant_is_not_swept(self, reader, make_title):
        quota_service.request_entitlement(reader.id, make_title().id, now=NOW - timedelta(days=14))

        assert sweep_expired_entitlements(now=NOW) == {"expired_count": 0}

    def test_placeholders_untouched(self, reader, make_title):
        title = make_title()
        entitlement_service.create_placeholder(reader.id, title.id, order_id=None, now=NOW - timedelta(days=90))
        db.session.commit()

        assert sweep_expired_entitlements(now=NOW) == {"expired_count": 0}
        assert _statuses(reader.id) == {title.id: ENTITLEMENT_ACTIVE}

    def test_scheduler_job_runs_in_app_context(self, app, reader, make_title):
        quota_service.request_entitlement(reader.id, make_title().id, now=datetime(2020, 1, 1))

        assert run_sweep_job(app) == {"expired_count": 1}


class TestScheduler:

    def test_start_and_shutdown(self, app):
        start_expiry_scheduler(app, initial_delay=3600)
        worker = scheduler._worker
        assert worker is not None and worker.is_alive()

        # Second start is ignored while a worker runs
        start_expiry_scheduler(app, initial_delay=3600)
        assert scheduler._worker is worker

        shutdown_expiry_scheduler()

        assert scheduler._worker is None
        assert not worker.is_alive()

    def test_shutdown_without_worker(self):
        shutdown_expiry_scheduler()
        assert scheduler._worker is None
