# tests/test_response_assembler.py
"""Tests for response record assembly."""

import pytest
import pandas as pd
import numpy as np

from t2d_drug_cohort.extractors.schemas import SchemaMismatchError
from t2d_drug_cohort.processing.response_assembler import (
    assemble_responses,
    baseline_to_long,
    build_response_episodes,
    first_instance_baselines,
    records_for_episode,
)

START = pd.Timestamp('2020-01-01')
BIOMARKERS = ['hba1c', 'bmi']


def make_baseline(episodes=None, **values):
    """Wide baseline table; values keyed like prehba1c=60."""
    episodes = episodes or [(1, START, 'SGLT2', 1)]
    rows = []
    for patid, dstartdate, drugclass, instance in episodes:
        row = {'patid': patid, 'dstartdate': dstartdate, 'drugclass': drugclass, 'druginstance': instance}
        for b in BIOMARKERS:
            value = values.get(f'pre{b}', np.nan)
            row[f'pre{b}'] = value
            row[f'pre{b}date'] = dstartdate - pd.Timedelta(days=10) if not pd.isna(value) else pd.NaT
            row[f'pre{b}drugdiff'] = -10.0 if not pd.isna(value) else np.nan
        row['height'] = 1.75
        rows.append(row)
    return pd.DataFrame(rows)


def make_combo(timeprevcombo=np.nan, patid=1, dstartdate=START):
    return pd.DataFrame({
        'patid': [patid],
        'dcstartdate': [dstartdate],
        'timetochange': [np.nan],
        'timetoaddrem': [np.nan],
        'multi_drug_start': [0],
        'timeprevcombo': [timeprevcombo],
    })


def make_post(entries):
    """Resolved post values from (biomarker, horizon, value, offset) tuples."""
    rows = []
    for biomarker, horizon, value, offset in entries:
        rows.append({
            'patid': 1,
            'dstartdate': START,
            'drugclass': 'SGLT2',
            'biomarker': biomarker,
            'horizon': horizon,
            'post_value': value,
            'post_date': START + pd.Timedelta(days=offset),
            'post_drugdiff': float(offset),
        })
    return pd.DataFrame(rows)


POST = make_post([
    ('hba1c', '6m', 52.0, 180),
    ('hba1c', '12m', 50.0, 360),
    ('bmi', '6m', 31.0, 190),
])


class TestBaselineReshape:
    """Tests for wide-to-long baseline conversion."""

    def test_one_row_per_biomarker(self):
        long = baseline_to_long(make_baseline(prehba1c=60.0, prebmi=32.0), BIOMARKERS)
        assert len(long) == 2
        assert set(long['biomarker']) == set(BIOMARKERS)
        assert long.set_index('biomarker').loc['bmi', 'pre_value'] == 32.0

    def test_missing_biomarker_columns_raise(self):
        baseline = make_baseline(prehba1c=60.0).drop(columns=['prebmidate'])
        with pytest.raises(SchemaMismatchError):
            baseline_to_long(baseline, BIOMARKERS)


class TestAssembleResponses:
    """Tests for joining baseline and post values."""

    def test_exactly_one_record_per_episode_biomarker(self):
        baseline = make_baseline(
            [(1, START, 'SGLT2', 1), (2, START, 'DPP4', 1)],
            prehba1c=60.0,
        )
        records = assemble_responses(baseline, POST, make_combo(), BIOMARKERS)
        assert len(records) == 4
        assert not records.duplicated(subset=['patid', 'dstartdate', 'drugclass', 'biomarker']).any()

    def test_later_instances_dropped(self):
        baseline = make_baseline([(1, START, 'SGLT2', 1), (1, START + pd.Timedelta(days=900), 'SGLT2', 2)])
        records = assemble_responses(baseline, POST, make_combo(), BIOMARKERS)
        assert (records['dstartdate'] == START).all()

    def test_responses_are_post_minus_baseline(self):
        baseline = make_baseline(prehba1c=60.0, prebmi=32.0)
        records = assemble_responses(baseline, POST, make_combo(), BIOMARKERS).set_index('biomarker')
        assert records.loc['hba1c', 'resp6m'] == pytest.approx(-8.0)
        assert records.loc['hba1c', 'resp12m'] == pytest.approx(-10.0)
        assert records.loc['bmi', 'resp6m'] == pytest.approx(-1.0)
        assert pd.isna(records.loc['bmi', 'resp12m'])

    def test_no_response_without_baseline(self):
        """Missing baseline gives missing response, post value kept."""
        baseline = make_baseline(prebmi=32.0)
        records = assemble_responses(baseline, POST, make_combo(), BIOMARKERS).set_index('biomarker')
        assert records.loc['hba1c', 'post6m_value'] == 52.0
        assert pd.isna(records.loc['hba1c', 'resp6m'])

    def test_baseline_kept_for_traceability(self):
        baseline = make_baseline(prehba1c=60.0)
        records = assemble_responses(baseline, POST, make_combo(), BIOMARKERS).set_index('biomarker')
        assert records.loc['hba1c', 'pre_value'] == 60.0
        assert records.loc['hba1c', 'pre_drugdiff'] == -10.0
        assert records.loc['hba1c', 'pre_date'] == START - pd.Timedelta(days=10)


class TestHbA1cRegimenMask:
    """Tests for HbA1c masking after a recent regimen change."""

    def _records(self, timeprevcombo):
        baseline = make_baseline(prehba1c=60.0, prebmi=32.0)
        records = assemble_responses(baseline, POST, make_combo(timeprevcombo), BIOMARKERS)
        return records.set_index('biomarker')

    def test_61_days_masks_hba1c(self):
        records = self._records(61)
        for col in ['post6m_value', 'post6m_date', 'post6m_drugdiff',
                    'post12m_value', 'post12m_date', 'post12m_drugdiff', 'resp6m', 'resp12m']:
            assert pd.isna(records.loc['hba1c', col])

    def test_62_days_keeps_hba1c(self):
        records = self._records(62)
        assert records.loc['hba1c', 'post6m_value'] == 52.0
        assert records.loc['hba1c', 'post12m_value'] == 50.0

    def test_missing_prevcombo_keeps_hba1c(self):
        records = self._records(np.nan)
        assert records.loc['hba1c', 'post6m_value'] == 52.0

    def test_other_biomarkers_unaffected(self):
        records = self._records(10)
        assert records.loc['bmi', 'post6m_value'] == 31.0
        assert records.loc['bmi', 'resp6m'] == pytest.approx(-1.0)


class TestResponseEpisodes:
    """Tests for the episode-level response table."""

    def test_extras_and_combo_carried(self):
        episodes = build_response_episodes(make_baseline(prehba1c=60.0), make_combo(30), BIOMARKERS)
        assert len(episodes) == 1
        assert episodes.iloc[0]['height'] == 1.75
        assert episodes.iloc[0]['timeprevcombo'] == 30
        assert 'prehba1c' not in episodes.columns

    def test_unprocessed_biomarker_columns_not_extras(self):
        """Baseline columns of biomarkers outside the run are not carried as extras."""
        episodes = build_response_episodes(make_baseline(prehba1c=60.0, prebmi=32.0), make_combo(), ['hba1c'])
        assert 'prebmi' not in episodes.columns
        assert 'prebmidate' not in episodes.columns
        assert 'height' in episodes.columns


class TestRecordAccess:
    """Tests for per-episode record lookup and baseline values."""

    def test_records_for_episode(self):
        baseline = make_baseline(prehba1c=60.0)
        records = assemble_responses(baseline, POST, make_combo(), BIOMARKERS)
        by_biomarker = records_for_episode(records, 1, '2020-01-01', 'SGLT2')
        assert set(by_biomarker) == set(BIOMARKERS)
        hba1c = by_biomarker['hba1c']
        assert hba1c.baseline.value == 60.0
        assert hba1c.post6m.offset == 180.0
        assert hba1c.resp12m == pytest.approx(-10.0)
        assert by_biomarker['bmi'].baseline.value is None

    def test_first_instance_baselines(self):
        baseline = make_baseline(
            [(1, START, 'SGLT2', 1), (1, START + pd.Timedelta(days=900), 'SGLT2', 2)],
            prehba1c=60.0, prebmi=32.0,
        )
        wide = first_instance_baselines(baseline, ['bmi', 'hba1c'])
        assert list(wide.columns) == ['patid', 'dstartdate', 'drugclass', 'prebmi', 'prehba1c']
        assert len(wide) == 1
        assert wide.iloc[0]['prebmi'] == 32.0

    def test_baselines_independent_of_processed_biomarkers(self):
        """Values come from the baseline table even without response records."""
        baseline = make_baseline(prehba1c=60.0, prebmi=32.0)
        records = assemble_responses(baseline, POST, make_combo(), ['hba1c'])
        assert set(records['biomarker']) == {'hba1c'}
        assert first_instance_baselines(baseline, ['bmi']).iloc[0]['prebmi'] == 32.0

    def test_missing_baseline_column_raises(self):
        with pytest.raises(SchemaMismatchError):
            first_instance_baselines(make_baseline(prehba1c=60.0), ['sbp'])
