"""Unit tests for PropertyLock."""
import time
from unittest.mock import patch

import pytest

from processor.errors import SyncInProgressError


class TestPropertyLock:
    """Test cases for the per-property sync lease."""

    def test_acquire_and_release(self, property_lock):
        owner = property_lock.acquire('prop-1')
        property_lock.release('prop-1', owner)

        # Free again after release
        property_lock.release('prop-1', property_lock.acquire('prop-1'))

    def test_second_acquire_times_out(self, property_lock):
        property_lock.acquire('prop-1')
        with pytest.raises(SyncInProgressError) as exc_info:
            property_lock.acquire('prop-1', wait_seconds=0)
        assert exc_info.value.property_id == 'prop-1'

    def test_different_properties_do_not_contend(self, property_lock):
        property_lock.acquire('prop-1')
        assert property_lock.acquire('prop-2')

    def test_expired_lease_can_be_taken_over(self, property_lock):
        property_lock.acquire('prop-1')
        later = time.time() + property_lock.lease_seconds + 5

        with patch('storage.lock_manager.time.time', return_value=later):
            assert property_lock.acquire('prop-1', wait_seconds=0)

    def test_release_by_stale_owner_keeps_new_holder(self, property_lock):
        stale = property_lock.acquire('prop-1')
        later = time.time() + property_lock.lease_seconds + 5
        with patch('storage.lock_manager.time.time', return_value=later):
            property_lock.acquire('prop-1', wait_seconds=0)

        property_lock.release('prop-1', stale)

        with pytest.raises(SyncInProgressError):
            property_lock.acquire('prop-1', wait_seconds=0)

    def test_hold_releases_on_error(self, property_lock):
        with pytest.raises(RuntimeError):
            with property_lock.hold('prop-1'):
                raise RuntimeError('boom')

        with property_lock.hold('prop-1') as owner:
            assert owner
