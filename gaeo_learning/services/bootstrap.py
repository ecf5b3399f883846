"""
Bootstrap — first version of every algorithm type plus the built-in research.

Safe to run on every deploy: a type that already has versions is left alone,
and a seed finding is skipped when one with the same title and type exists.
"""
import logging

from gaeo_learning.config import ALGORITHM_TYPES, default_weights
from gaeo_learning.models.research_finding import ResearchFinding

logger = logging.getLogger('services.bootstrap')

_RESEARCH_URL = 'https://github.com/199-biotechnologies/claude-skill-seo-geo-optimizer'

# One entry per (finding, algorithm type); impacts are relative (0.4 = +40%).
SEED_FINDINGS = [
    {
        'title': 'FAQPage schema maximizes AI citation probability',
        'source': 'Google Research / SEO-GEO Optimizer',
        'url': _RESEARCH_URL,
        'published_date': '2025-01-01',
        'impacts': {
            'aeo': [{'factor': 'faq_schema', 'impact': 0.4, 'confidence': 0.95}],
            'aio': [{'factor': 'faq_schema', 'impact': 0.4, 'confidence': 0.95}],
        },
    },
    {
        'title': 'H2 -> H3 -> bullet structure raises Perplexity citations by 40%',
        'source': 'Perplexity Research / SEO-GEO Optimizer',
        'url': _RESEARCH_URL,
        'published_date': '2025-01-01',
        'impacts': {
            'geo': [{'factor': 'h2_h3_bullets_structure', 'impact': 0.4, 'confidence': 0.9}],
            'aeo': [{'factor': 'h2_h3_bullets_structure', 'impact': 0.35, 'confidence': 0.9}],
        },
    },
    {
        'title': 'Content updated within 30 days is cited 3.2x more by Perplexity',
        'source': 'Perplexity Research / SEO-GEO Optimizer',
        'url': _RESEARCH_URL,
        'published_date': '2025-01-01',
        'impacts': {
            'geo': [{'factor': 'content_freshness_30days', 'impact': 2.2, 'confidence': 0.85}],
            'aeo': [{'factor': 'content_freshness_30days', 'impact': 1.5, 'confidence': 0.85}],
        },
    },
    {
        'title': 'Statistics (+41%) and quotations (+28%) raise AI citation probability',
        'source': 'SEO-GEO Optimizer',
        'url': _RESEARCH_URL,
        'published_date': '2025-01-01',
        'impacts': {
            'aeo': [
                {'factor': 'statistics', 'impact': 0.41, 'confidence': 0.9},
                {'factor': 'quotations', 'impact': 0.28, 'confidence': 0.9},
            ],
        },
    },
    {
        'title': 'Author credentials raise ChatGPT citations by 40%',
        'source': 'Google Research / SEO-GEO Optimizer',
        'url': _RESEARCH_URL,
        'published_date': '2025-01-01',
        'impacts': {
            'aio': [{'factor': 'author_credentials', 'impact': 0.4, 'confidence': 0.9}],
            'aeo': [{'factor': 'author_credentials', 'impact': 0.3, 'confidence': 0.9}],
        },
    },
    {
        'title': 'Primary sources only: 91.2% accurate attribution by Claude',
        'source': 'Anthropic Research',
        'url': 'https://www.anthropic.com',
        'published_date': '2025-01-01',
        'impacts': {
            'aio': [{'factor': 'primary_sources_only', 'impact': 0.3, 'confidence': 0.95}],
            'aeo': [{'factor': 'primary_sources', 'impact': 0.25, 'confidence': 0.95}],
        },
    },
]


def initialize_algorithms(versions, research, seed_findings=True):
    """
    Create + promote v1 for every type without versions; save missing seed findings.

    Returns {'versions': [created...], 'findings': [saved...]}.
    """
    created = []
    for algorithm_type in ALGORITHM_TYPES:
        if versions.list_versions(algorithm_type):
            logger.debug("%s already initialized", algorithm_type)
            continue
        version = versions.create_version(
            algorithm_type,
            default_weights(algorithm_type),
            research_based=False,
            config={'source': 'bootstrap', 'description': f'Initial {algorithm_type} weights'},
            activate=True,
        )
        created.append(version)

    saved = []
    if seed_findings:
        with research.store.session() as session:
            existing = {
                (title, algorithm_type)
                for title, algorithm_type in session.query(
                    ResearchFinding.title, ResearchFinding.algorithm_type,
                )
            }
        for seed in SEED_FINDINGS:
            for algorithm_type, impacts in seed['impacts'].items():
                if (seed['title'], algorithm_type) in existing:
                    continue
                saved.append(research.save_finding(
                    seed['title'], seed['source'], algorithm_type,
                    url=seed['url'],
                    published_date=seed['published_date'],
                    impacts=impacts,
                ))

    logger.info("Bootstrap complete: %d versions created, %d findings seeded",
                len(created), len(saved))
    return {'versions': created, 'findings': saved}
