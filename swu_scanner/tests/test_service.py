"""
swu_scanner/tests/test_service.py: Tests for the recognition service lifecycle
"""

import asyncio

import numpy as np
import pytest

from swu_scanner.acquisition.frames import StaticFrameSource
from swu_scanner.indexing.image_processor import InvalidSourceError
from swu_scanner.indexing.indexer import ProgressPhase
from swu_scanner.indexing.phash import hash_image
from swu_scanner.service import (
    IdentifyResult, MatcherState, RecognitionService, ReferenceDatabaseUnavailableError
)
from swu_scanner.tests.conftest import (
    BINDER_POCKET_SIZE, FakeFetcher, binder_page, catalog_row, flip_bits, grid_image, image_bytes,
    listing_url, make_record, noise_image
)
from swu_scanner.utils.fetch import FetchError

ZEROS = '0' * 64


def fake_network(sets):
    """Listings and artwork for {set_code: number_of_prints}"""
    responses = {}
    seed = 100
    for set_code, count in sets.items():
        rows = [catalog_row(set_code, f"{i:03d}", name=f"{set_code} card {i}") for i in range(1, count + 1)]
        responses[listing_url(set_code)] = {'data': rows}
        for row in rows:
            responses[row['FrontArt']] = image_bytes(noise_image(seed))
            seed += 1
    return responses


class CountingFactory:
    """fetcher_factory that counts how many builds were started"""

    def __init__(self, responses):
        self.responses = responses
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return FakeFetcher(self.responses)


def no_network():
    raise AssertionError("reference database should have been loaded from cache")


def make_service(store, factory=no_network, set_codes=('SOR',), min_records=2):
    return RecognitionService(
        store=store,
        set_codes=list(set_codes),
        fetcher_factory=factory,
        min_records=min_records
    )


def cached_records(count, set_code='SOR'):
    return [make_record(set_code=set_code, number=f"{i:03d}", fingerprint=hash_image(noise_image(i))) for i in range(count)]


class TestInitMatcher:
    """Test load-or-build"""

    def test_loads_cached_store_without_building(self, store):
        store.put_many(cached_records(5))
        store.put_meta(['SOR'], 5)
        service = make_service(store)
        events = []

        asyncio.run(service.init_matcher(events.append))

        assert service.is_ready
        assert service.record_count == 5
        assert events[0].phase == ProgressPhase.LOADING
        assert events[-1].percent == 100

    def test_small_store_is_rebuilt(self, store):
        store.put_many(cached_records(2))
        factory = CountingFactory(fake_network({'SOR': 4}))
        service = make_service(store, factory)

        asyncio.run(service.init_matcher())

        assert factory.calls == 1
        assert service.record_count == 4
        assert store.count() == 4

    def test_empty_store_builds(self, store):
        factory = CountingFactory(fake_network({'SOR': 3, 'SHD': 2}))
        service = make_service(store, factory, set_codes=('SOR', 'SHD'))
        events = []

        asyncio.run(service.init_matcher(events.append))

        assert service.state == MatcherState.READY
        assert service.record_count == 5
        assert events[-1].phase == ProgressPhase.READY
        assert events[-1].message == 'Ready! 5 cards indexed.'

    def test_init_is_idempotent(self, store):
        factory = CountingFactory(fake_network({'SOR': 3}))
        service = make_service(store, factory)

        asyncio.run(service.init_matcher())
        asyncio.run(service.init_matcher())
        assert factory.calls == 1

    def test_concurrent_init_builds_once(self, store):
        factory = CountingFactory(fake_network({'SOR': 3}))
        service = make_service(store, factory)

        async def scenario():
            await asyncio.gather(service.init_matcher(), service.init_matcher())

        asyncio.run(scenario())
        assert factory.calls == 1
        assert service.is_ready

    def test_nothing_fetched_raises(self, store):
        responses = {listing_url('SOR'): FetchError(listing_url('SOR'), ['direct: HTTP 503'])}
        service = make_service(store, CountingFactory(responses))

        with pytest.raises(ReferenceDatabaseUnavailableError):
            asyncio.run(service.init_matcher())
        assert service.state == MatcherState.EMPTY
        assert not service.is_ready

    def test_failing_fetcher_raises(self, store):
        def broken_factory():
            raise OSError("no route to host")

        service = make_service(store, broken_factory)
        with pytest.raises(ReferenceDatabaseUnavailableError):
            asyncio.run(service.init_matcher())
        assert service.state == MatcherState.EMPTY

    def test_new_set_triggers_rebuild(self, store):
        store.put_many(cached_records(5))
        store.put_meta(['SOR'], 5)
        factory = CountingFactory(fake_network({'SOR': 2, 'JTL': 2}))
        service = make_service(store, factory, set_codes=('SOR', 'JTL'))
        events = []

        asyncio.run(service.init_matcher(events.append))

        assert factory.calls == 1
        assert service.record_count == 4
        assert store.count() == 4
        assert {'SOR', 'JTL'} <= set(store.get_meta()['set_codes'])
        assert events[0].message == 'New sets available, updating card database...'

    def test_rebuild_reference_database(self, store):
        store.put_many(cached_records(5))
        store.put_meta(['SOR'], 5)
        factory = CountingFactory(fake_network({'SOR': 3}))
        service = make_service(store, factory)

        asyncio.run(service.init_matcher())
        assert factory.calls == 0
        asyncio.run(service.rebuild_reference_database())

        assert factory.calls == 1
        assert service.record_count == 3
        assert store.count() == 3


def offline():
    return FakeFetcher({})


def plain_records(count, set_code='SOR'):
    return [make_record(set_code=set_code, number=f"{i:03d}", fingerprint=f"{i:064b}") for i in range(count)]


class TestCacheSafety:
    """A working cache is never lost to a failed build"""

    def test_offline_stale_cache_is_kept(self, store):
        store.put_many(plain_records(150))
        store.put_meta(['SOR'], 150)
        service = make_service(store, offline, set_codes=('SOR', 'JTL'), min_records=100)
        events = []

        asyncio.run(service.init_matcher(events.append))

        assert service.is_ready
        assert service.record_count == 150
        assert store.count() == 150
        assert store.get_meta()['set_codes'] == ['SOR']
        assert events[-1].message == 'Card database ready'

    def test_unreachable_network_falls_back_to_cache(self, store):
        def broken_factory():
            raise OSError("no route to host")

        store.put_many(plain_records(150))
        store.put_meta(['SOR'], 150)
        service = make_service(store, broken_factory, set_codes=('SOR', 'JTL'), min_records=100)

        asyncio.run(service.init_matcher())
        assert service.record_count == 150

    def test_small_cache_is_used_when_build_fails(self, store):
        store.put_many(plain_records(2))
        service = make_service(store, offline)

        asyncio.run(service.init_matcher())
        assert service.is_ready
        assert service.record_count == 2

    def test_subset_index_is_not_stale_later(self, store):
        factory = CountingFactory(fake_network({'SOR': 3}))
        asyncio.run(make_service(store, factory, set_codes=('SOR',)).init_matcher())
        assert factory.calls == 1

        service = RecognitionService(store=store, fetcher_factory=no_network, min_records=2)
        asyncio.run(service.init_matcher())

        assert service.is_ready
        assert service.record_count == 3

    def test_failed_rebuild_keeps_current_database(self, store):
        store.put_many(cached_records(5))
        store.put_meta(['SOR'], 5)
        service = make_service(store, offline)
        asyncio.run(service.init_matcher())

        with pytest.raises(ReferenceDatabaseUnavailableError):
            asyncio.run(service.rebuild_reference_database())

        assert service.is_ready
        assert service.record_count == 5
        assert store.count() == 5

    def test_rebuild_progress_message(self, store):
        service = make_service(store, CountingFactory(fake_network({'SOR': 3})))
        events = []

        asyncio.run(service.rebuild_reference_database(events.append))
        assert events[0].message == 'Rebuilding card database...'
        assert events[-1].phase == ProgressPhase.READY

    def test_first_build_progress_message(self, store):
        service = make_service(store, CountingFactory(fake_network({'SOR': 3})))
        events = []

        asyncio.run(service.init_matcher(events.append))
        assert events[0].message == 'Building card database (first time)...'


class TestIdentify:
    """Test identification through the service"""

    def test_not_ready_never_matches(self, store, sample_card_image):
        service = make_service(store)
        result = service.identify(sample_card_image, assume_full_card=True)
        assert result == IdentifyResult(matched=False)
        assert result.to_dict() == {'matched': False}

    def test_full_card_match(self, store):
        store.put_many([make_record(set_code='SOR', number='001', fingerprint=ZEROS, name='Luke Skywalker')])
        store.put_meta(['SOR'], 1)
        service = make_service(store, min_records=0)
        asyncio.run(service.init_matcher())

        result = service.identify(grid_image(flip_bits(ZEROS, 10)), assume_full_card=True)
        assert result.matched
        assert result.distance == 10
        assert result.confidence == 84
        assert result.to_dict()['identity']['display_name'] == 'Luke Skywalker'

    def test_center_crop_match(self, store, sample_card_image):
        store.put_many([
            make_record(set_code='SHD', number='042', fingerprint=hash_image(sample_card_image)),
            *cached_records(5),
        ])
        store.put_meta(['SOR', 'SHD'], 6)
        service = make_service(store, set_codes=('SOR', 'SHD'))
        asyncio.run(service.init_matcher())

        frame = np.zeros((1000, 630, 3), dtype=np.uint8)
        frame[280:720, 158:473] = np.asarray(sample_card_image)
        result = service.identify(frame)
        assert result.matched
        assert result.identity.key == 'SHD-042'

    def test_invalid_source_raises(self, store):
        service = make_service(store)
        with pytest.raises(InvalidSourceError):
            service.identify(b'')

    def test_binder_page(self, store):
        cards = [noise_image(200 + i) if i != 4 else None for i in range(9)]
        store.put_many([
            make_record(number=f"{i:03d}", fingerprint=hash_image(card.resize((BINDER_POCKET_SIZE, BINDER_POCKET_SIZE))))
            for i, card in enumerate(cards) if card is not None
        ])
        store.put_meta(['SOR'], 8)
        service = make_service(store)
        asyncio.run(service.init_matcher())

        results = service.identify_binder_page(binder_page(cards))

        assert len(results) == 9
        assert not results[4].matched
        assert [r.identity.key for i, r in enumerate(results) if i != 4] == [
            f"SOR-{i:03d}" for i in range(9) if i != 4
        ]
        assert all(r.distance == 0 for i, r in enumerate(results) if i != 4)

    def test_binder_page_invalid_source(self, store):
        with pytest.raises(InvalidSourceError):
            make_service(store).identify_binder_page(b'')


class TestWatching:
    """Test the auto-scan loop through the service"""

    def test_watch_reports_results(self, store, textured_frame):
        store.put_many(cached_records(5))
        store.put_meta(['SOR'], 5)
        service = make_service(store)
        results = []

        async def scenario():
            await service.init_matcher()
            scanner = service.start_watching(StaticFrameSource(textured_frame), results.append, interval=60)
            attempted = await scanner.tick()
            service.stop_watching()
            return scanner, attempted

        scanner, attempted = asyncio.run(scenario())
        assert attempted
        assert not scanner.is_active
        assert len(results) == 1
        assert isinstance(results[0], IdentifyResult)
