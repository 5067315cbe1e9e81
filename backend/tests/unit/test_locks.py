"""Unit tests for per-institution locks."""

import threading

import pytest

from services.exceptions import InstitutionBusyError
from services.locks import institution_lock, is_institution_locked


def test_lock_is_held_inside_block():
    with institution_lock("ins_lock_a", timeout=1):
        assert is_institution_locked("ins_lock_a") is True
        assert is_institution_locked("ins_lock_b") is False
    assert is_institution_locked("ins_lock_a") is False


def test_busy_institution_times_out():
    held = threading.Event()
    release = threading.Event()

    def holder():
        with institution_lock("ins_lock_c", timeout=1):
            held.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        assert held.wait(5)
        with pytest.raises(InstitutionBusyError) as excinfo:
            with institution_lock("ins_lock_c", timeout=0.05):
                pass
        assert excinfo.value.institution_id == "ins_lock_c"
    finally:
        release.set()
        thread.join()

    with institution_lock("ins_lock_c", timeout=1):
        pass


def test_lock_released_on_error():
    with pytest.raises(RuntimeError):
        with institution_lock("ins_lock_d", timeout=1):
            raise RuntimeError("boom")
    assert is_institution_locked("ins_lock_d") is False
