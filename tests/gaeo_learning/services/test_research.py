"""Tests for gaeo_learning.services.research — saving and applying findings."""
import pytest
from unittest.mock import MagicMock

from gaeo_learning.config import default_weights
from gaeo_learning.errors import NotFound, PersistenceError, ValidationError
from gaeo_learning.models.algorithm_version import AlgorithmVersion
from gaeo_learning.services.research import ResearchIngestor


def _count_versions(store, algorithm_type):
    with store.session() as session:
        return session.query(AlgorithmVersion).filter(
            AlgorithmVersion.algorithm_type == algorithm_type,
        ).count()


class TestSaveFinding:

    def test_saved_unapplied(self, research):
        finding = research.save_finding('title', 'src', 'seo', {'keywordWeight': 0.05})
        assert finding.applied is False
        assert finding.applied_version_id is None
        assert finding.suggested_weight_delta == {'keywordWeight': 0.05}

    def test_optional_fields(self, research):
        finding = research.save_finding(
            'FAQ schema', 'Research', 'aeo',
            url='https://example.com', published_date='2025-01-01',
            impacts=[{'factor': 'faq_schema', 'impact': 0.4, 'confidence': 0.95}],
        )
        fetched = research.get_finding(finding.id)
        assert fetched.url == 'https://example.com'
        assert fetched.impacts[0]['factor'] == 'faq_schema'

    @pytest.mark.parametrize('kwargs', [
        dict(title='', source='src', algorithm_type='seo'),
        dict(title='t', source='  ', algorithm_type='seo'),
        dict(title='t', source='src', algorithm_type='bing'),
        dict(title='t', source='src', algorithm_type='seo', suggested_weight_delta={'k': 'up'}),
        dict(title='t', source='src', algorithm_type='seo', impacts=[{'impact': 0.1}]),
        dict(title='t', source='src', algorithm_type='seo', impacts={'factor': 'k'}),
    ])
    def test_invalid_findings_rejected(self, research, kwargs):
        with pytest.raises(ValidationError):
            research.save_finding(**kwargs)

    def test_get_finding_not_found(self, research):
        with pytest.raises(NotFound):
            research.get_finding('missing')


class TestGetUnapplied:

    def test_filters_by_type_newest_first(self, research):
        first = research.save_finding('one', 'src', 'seo', {'k': 0.1})
        research.save_finding('other', 'src', 'geo', {'k': 0.1})
        second = research.save_finding('two', 'src', 'seo', {'k': 0.1})
        assert [f.id for f in research.get_unapplied('seo')] == [second.id, first.id]
        assert len(research.get_unapplied()) == 3

    def test_store_failure_degrades_to_empty(self, versions, learner):
        broken = MagicMock()
        broken.session.side_effect = PersistenceError("down")
        assert ResearchIngestor(broken, versions, learner).get_unapplied('seo') == []


class TestApplyFinding:

    def test_seo_scenario(self, research, versions, make_version):
        base = make_version('seo', default_weights('seo'))
        finding = research.save_finding('title', 'src', 'seo', {'keywordWeight': 0.05})

        version = research.apply_finding(finding.id)

        assert version.research_based is True
        assert version.algorithm_type == 'seo'
        assert version.version == base.version + 1
        assert version.weights['keywordWeight'] == pytest.approx(0.05)
        assert version.research_findings == [finding.id]
        assert versions.get_active('seo').id == version.id
        assert versions.get_version(base.id).is_active is False
        assert finding.id not in [f.id for f in research.get_unapplied('seo')]

    def test_existing_factor_delta_clamped(self, research, make_version):
        make_version('seo', {'keywordWeight': 1.0, 'other': 1.0})
        finding = research.save_finding('title', 'src', 'seo', {'keywordWeight': 0.9})
        version = research.apply_finding(finding.id)
        assert version.weights['keywordWeight'] == pytest.approx(1.2)
        assert version.weights['other'] == 1.0

    def test_idempotent(self, research, store, make_version):
        make_version('geo', {'f': 10.0})
        finding = research.save_finding('title', 'src', 'geo', {'f': 1.0})

        first = research.apply_finding(finding.id)
        count = _count_versions(store, 'geo')
        second = research.apply_finding(finding.id)

        assert second.id == first.id
        assert _count_versions(store, 'geo') == count
        assert research.get_finding(finding.id).applied_version_id == first.id

    def test_marks_finding_applied(self, research, make_version):
        make_version('geo', {'f': 10.0})
        finding = research.save_finding('title', 'src', 'geo', {'f': 1.0})
        version = research.apply_finding(finding.id)
        fetched = research.get_finding(finding.id)
        assert fetched.applied is True
        assert fetched.applied_at is not None
        assert fetched.applied_version_id == version.id

    def test_uninitialized_type_starts_from_defaults(self, research, versions):
        finding = research.save_finding('title', 'src', 'aeo', {'faq_section': 1.0})
        version = research.apply_finding(finding.id)
        assert version.version == 1
        assert version.weights['faq_section'] == pytest.approx(default_weights('aeo')['faq_section'] + 1.0)
        assert versions.get_active('aeo').id == version.id

    def test_impacts_used_when_no_explicit_delta(self, research, make_version):
        make_version('aeo', {'faq_schema': 10.0, 'other': 10.0})
        finding = research.save_finding(
            'FAQ', 'src', 'aeo',
            impacts=[{'factor': 'faq_schema', 'impact': 0.1, 'confidence': 1.0}],
        )
        version = research.apply_finding(finding.id)
        assert version.weights['faq_schema'] == pytest.approx(11.0)

    def test_finding_without_delta_or_impacts_rejected(self, research, store, make_version):
        make_version('geo', {'f': 10.0})
        finding = research.save_finding('empty', 'src', 'geo')
        with pytest.raises(ValidationError):
            research.apply_finding(finding.id)
        assert _count_versions(store, 'geo') == 1
        assert research.get_finding(finding.id).applied is False

    def test_unknown_finding(self, research):
        with pytest.raises(NotFound):
            research.apply_finding('missing')

    def test_research_based_only_via_findings(self, research, versions, make_version):
        make_version('geo', {'f': 10.0})
        finding = research.save_finding('title', 'src', 'geo', {'f': 1.0})
        research.apply_finding(finding.id)
        flags = [v.research_based for v in versions.list_versions('geo')]
        assert flags == [False, True]


class TestApplyAllAndImprovements:

    def test_apply_all_skips_failures(self, research, make_version):
        make_version('geo', {'f': 10.0})
        good = research.save_finding('good', 'src', 'geo', {'f': 1.0})
        research.save_finding('bad', 'src', 'geo')
        applied = research.apply_all('geo')
        assert len(applied) == 1
        assert research.get_finding(good.id).applied is True
        assert [f.title for f in research.get_unapplied('geo')] == ['bad']

    def test_apply_all_in_chronological_order(self, research, make_version):
        make_version('geo', {'f': 10.0})
        first = research.save_finding('first', 'src', 'geo', {'f': 1.0})
        second = research.save_finding('second', 'src', 'geo', {'f': 1.0})
        applied = research.apply_all()
        assert [v.research_findings for v in applied] == [[first.id], [second.id]]
        assert applied[1].version == applied[0].version + 1

    def test_research_improvements_joins_versions(self, research, make_version):
        make_version('geo', {'f': 10.0})
        finding = research.save_finding('title', 'src', 'geo', {'f': 1.0})
        version = research.apply_finding(finding.id)
        research.save_finding('pending', 'src', 'geo', {'f': 1.0})

        rows = research.research_improvements('geo')
        assert len(rows) == 1
        assert rows[0]['finding']['id'] == finding.id
        assert rows[0]['version']['id'] == version.id
        assert rows[0]['version']['research_based'] is True
