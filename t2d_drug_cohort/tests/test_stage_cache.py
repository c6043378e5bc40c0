# tests/test_stage_cache.py
"""Tests for stage checkpoints and cancellation."""

import pytest
import pandas as pd

from t2d_drug_cohort.processing.stage_cache import PipelineCancelled, StageCache


class Builder:
    """Counts how often a stage is built."""

    def __init__(self, value=1):
        self.calls = 0
        self.value = value

    def __call__(self):
        self.calls += 1
        return pd.DataFrame({'patid': [1, 2], 'x': [self.value, self.value]})


class TestStageCache:
    """Tests for checkpoint reuse."""

    def test_no_cache_dir_always_builds(self):
        cache = StageCache()
        build = Builder()
        cache.cached('stage', build)
        cache.cached('stage', build)
        assert build.calls == 2
        assert cache.path('stage') is None

    def test_checkpoint_written_and_reused(self, tmp_path):
        build = Builder()
        first = StageCache(tmp_path).cached('stage', build)
        assert (tmp_path / 'stage.parquet').exists()

        second = StageCache(tmp_path).cached('stage', Builder(value=99))
        assert build.calls == 1
        pd.testing.assert_frame_equal(first, second)

    def test_refresh_rebuilds(self, tmp_path):
        StageCache(tmp_path).cached('stage', Builder())
        rebuilt = StageCache(tmp_path, refresh=True).cached('stage', Builder(value=99))
        assert list(rebuilt['x']) == [99, 99]
        reread = StageCache(tmp_path).cached('stage', Builder())
        assert list(reread['x']) == [99, 99]

    def test_cancel_before_stage(self, tmp_path):
        cache = StageCache(tmp_path)
        cache.cancel_event.set()
        build = Builder()
        with pytest.raises(PipelineCancelled):
            cache.cached('stage', build)
        assert build.calls == 0
        assert not (tmp_path / 'stage.parquet').exists()
