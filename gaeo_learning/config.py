"""
Centralized configuration — env vars, algorithm/agent enums, learning tunables.
"""
import logging
import os

import yaml

logger = logging.getLogger('gaeo_learning.config')


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Learning jobs ────────────────────────────────────────────────────────────
LEARNING_QUEUE_NAME = os.getenv('LEARNING_QUEUE_NAME', 'learning')
LEARNING_JOB_TIMEOUT = int(os.getenv('LEARNING_JOB_TIMEOUT', '900'))
LEARNING_LOCK_TIMEOUT = int(os.getenv('LEARNING_LOCK_TIMEOUT', '600'))

# ── Reward channel ───────────────────────────────────────────────────────────
REWARD_QUEUE_MAXSIZE = int(os.getenv('REWARD_QUEUE_MAXSIZE', '1000'))

# ── Algorithm types (one scoring dimension each) ─────────────────────────────
ALGORITHM_TYPES = [
    'aeo',
    'geo',
    'seo',
    'aio',
]

# ── Agent types that emit spans / rewards ────────────────────────────────────
AGENT_TYPES = [
    'seo',
    'aeo',
    'geo',
    'aio',
    'chat',
    'content_revision',
    'suggestions',
]

SPAN_TYPES = [
    'prompt',
    'response',
]


# ── Learning config (YAML with hardcoded fallback) ───────────────────────────

_learning_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'default_weights': {
            'seo': {
                'h1_tag': 20,
                'title_tag': 15,
                'meta_description': 15,
                'alt_text': 10,
                'structured_data': 10,
                'meta_keywords': 5,
                'og_tags': 10,
                'canonical_url': 5,
                'internal_links': 5,
                'heading_structure': 5,
            },
            'aeo': {
                'question_format': 20,
                'faq_section': 15,
                'clear_answer_structure': 20,
                'keyword_density': 10,
                'structured_answer': 15,
                'content_freshness': 10,
                'term_explanation': 10,
                'statistics_bonus': 5,
                'quotations_bonus': 3,
            },
            'geo': {
                'content_length_2000': 20,
                'content_length_1500': 18,
                'content_length_1000': 15,
                'content_length_500': 10,
                'multimedia_optimal': 15,
                'multimedia_good': 10,
                'section_structure_optimal': 15,
                'section_structure_basic': 10,
                'keyword_diversity': 15,
                'update_date_optimal': 10,
                'update_date_partial': 7,
                'social_meta_optimal': 10,
                'social_meta_partial': 6,
                'structured_data_optimal': 15,
                'structured_data_basic': 10,
                'voice_search_bonus': 5,
            },
            'aio': {
                'chatgpt_seo_weight': 0.4,
                'chatgpt_aeo_weight': 0.35,
                'chatgpt_geo_weight': 0.25,
                'perplexity_geo_weight': 0.45,
                'perplexity_seo_weight': 0.3,
                'perplexity_aeo_weight': 0.25,
                'gemini_geo_weight': 0.4,
                'gemini_seo_weight': 0.35,
                'gemini_aeo_weight': 0.25,
                'claude_aeo_weight': 0.4,
                'claude_geo_weight': 0.35,
                'claude_seo_weight': 0.25,
            },
        },
        'learner': {
            'learning_rate': 0.05,
            'max_step_ratio': 0.10,
            'min_step': 0.01,
            'weight_floor': 0.0,
            'weight_ceiling': 100.0,
            'max_backtracks': 8,
        },
        'research': {
            'max_delta_ratio': 0.20,
        },
        'promotion': {
            'min_improvement_rate': 0.01,
            'batch_size': 200,
        },
        'rewards': {
            'success_threshold': 70,
            'min_template_uses': 5,
            'analysis_benchmark': 50,
            'weights': {
                'relevance': 0.4,
                'accuracy': 0.3,
                'usefulness': 0.3,
            },
        },
        'default_prompts': {
            'seo': 'As an SEO specialist, review the analysis for {url} '
                   '(SEO score {seo_score}/100) and give concrete, step-by-step improvements.',
            'aeo': 'As an answer-engine optimization specialist, review the analysis for {url} '
                   '(AEO score {aeo_score}/100). Focus on question-shaped content, FAQ '
                   'sections and concise answers.',
            'geo': 'As a generative-engine optimization specialist, review the analysis for {url} '
                   '(GEO score {geo_score}/100). Focus on depth, section structure, '
                   'multimedia and freshness.',
            'aio': 'As an AI citation specialist, explain how to raise the citation '
                   'likelihood of {url} for each major AI model.',
            'chat': 'You are a GAEO assistant giving actionable advice on AI search '
                    'optimization. Answer in markdown with concrete steps.\n\nQ: {user_message}\nA:',
            'content_revision': 'Revise the following content so it scores higher for '
                                'AI search engines while keeping its meaning:\n\n{content}',
            'suggestions': 'Suggest three follow-up questions a user might ask about '
                           'improving {url}.',
        },
    }


def load_learning_config():
    """Load learning config from YAML, with in-memory cache and hardcoded fallback."""
    global _learning_config
    if _learning_config is not None:
        return _learning_config

    config_path = os.getenv(
        'LEARNING_CONFIG_PATH',
        os.path.join(os.path.dirname(__file__), 'learning_config.yaml'),
    )
    try:
        with open(config_path, 'r') as f:
            _learning_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _learning_config.get('version', '?'))
    except Exception as e:
        logger.warning("YAML config not found (%s), using defaults", e)
        _learning_config = _default_config()

    return _learning_config


def default_weights(algorithm_type):
    """Bootstrap weight vector for an algorithm type (a fresh copy)."""
    weights = load_learning_config().get('default_weights', {}).get(algorithm_type)
    if weights is None:
        weights = _default_config()['default_weights'].get(algorithm_type, {})
    return dict(weights)
