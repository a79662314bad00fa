import threading
import time
import uuid
from contextlib import contextmanager
from datetime import timedelta

from django.conf import settings
from django.db.models import Q
from django.utils.timezone import now as tz_now

from Admissions.models import AttemptLock
from SkillGate.errors import AttemptBusy

_registry_guard = threading.Lock()
_local_locks = {}


def _acquire_local(key):
    with _registry_guard:
        entry = _local_locks.get(key)
        if entry is None:
            entry = _local_locks[key] = [threading.Lock(), 0]
        entry[1] += 1
    entry[0].acquire()
    return entry


def _release_local(key, entry):
    entry[0].release()
    with _registry_guard:
        entry[1] -= 1
        if entry[1] == 0:
            _local_locks.pop(key, None)


def _acquire_lease(developer_id, project_id) -> str:
    AttemptLock.objects.get_or_create(developer_id=developer_id, project_id=project_id)
    token = uuid.uuid4().hex
    deadline = time.monotonic() + settings.ADMISSION_LOCK_WAIT_SECONDS
    while True:
        now = tz_now()
        claimed = AttemptLock.objects.filter(
            Q(held_until__isnull=True) | Q(held_until__lt=now),
            developer_id=developer_id,
            project_id=project_id,
        ).update(holder=token, held_until=now + timedelta(seconds=settings.ADMISSION_LOCK_LEASE_SECONDS))
        if claimed:
            return token
        if time.monotonic() >= deadline:
            raise AttemptBusy("Another request for this project is still being processed; try again shortly")
        time.sleep(settings.ADMISSION_LOCK_POLL_SECONDS)


def _release_lease(developer_id, project_id, token) -> None:
    AttemptLock.objects.filter(developer_id=developer_id, project_id=project_id, holder=token).update(
        holder="", held_until=None
    )


@contextmanager
def admission_lock(developer_id, project_id):
    """
    Serialize admission work for one (developer, project) pair.

    A process-local lock orders threads. Other processes are kept out by a
    lease on the pair's AttemptLock row, claimed with a conditional UPDATE
    that commits on its own. No transaction is held open for the body, so a
    slow evaluation only blocks this pair; bodies open their own short
    transactions for the writes that must land together. A lease left
    behind by a crashed process lapses after ``ADMISSION_LOCK_LEASE_SECONDS``.
    """
    key = (int(developer_id), int(project_id))
    entry = _acquire_local(key)
    try:
        token = _acquire_lease(*key)
        try:
            yield
        finally:
            _release_lease(*key, token)
    finally:
        _release_local(key, entry)
