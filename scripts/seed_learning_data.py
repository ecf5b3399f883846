#!/usr/bin/env python3
"""
Seed the learning engine for local development.

Creates v1 of every algorithm type from the default weights, saves the
built-in research findings, and optionally fills in synthetic A/B tests so
the learning cycle has evidence to work with.

Usage:
    python scripts/seed_learning_data.py                      # versions + findings
    python scripts/seed_learning_data.py --with-tests 50      # plus 50 A/B tests per type
    python scripts/seed_learning_data.py --database-url sqlite:///dev.db

DATABASE_URL is used when --database-url is not given (defaults to sqlite:///local.db).
"""
import sys
import os
import argparse
import random

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gaeo_learning import create_learning_engine
from gaeo_learning.config import ALGORITHM_TYPES
from gaeo_learning.services.bootstrap import initialize_algorithms
from gaeo_learning.services.weight_learner import predict


def linear_scorer(algorithm_type, scoring_input, weights):
    return predict(weights, scoring_input.features)


def seed_tests(engine, algorithm_type, count, rng):
    """A challenger version plus `count` tests whose actual scores favour a hidden weight vector."""
    active = engine.versions.get_active(algorithm_type, strict=True)
    factors = list(active.weights)
    hidden = {f: w * rng.uniform(0.8, 1.2) for f, w in active.weights.items()}
    challenger = engine.versions.create_version(
        algorithm_type,
        {f: w * rng.uniform(0.9, 1.1) for f, w in active.weights.items()},
        config={'source': 'seed', 'description': 'Synthetic challenger'},
    )

    for _ in range(count):
        features = {f: round(rng.random(), 3) for f in rng.sample(factors, k=max(1, len(factors) // 2))}
        actual = predict(hidden, features) + rng.gauss(0, 1)
        engine.ab_tests.create_ab_test(
            algorithm_type, active.id, challenger.id,
            {'features': features},
            actual_score=round(actual, 2),
        )
    print(f'  {algorithm_type}: {count} tests against v{challenger.version}')


def main():
    parser = argparse.ArgumentParser(description='Seed algorithm versions, research findings and A/B tests')
    parser.add_argument('--database-url', help='Override DATABASE_URL')
    parser.add_argument('--with-tests', type=int, default=0, metavar='N',
                        help='Synthetic A/B tests to add per algorithm type')
    parser.add_argument('--seed', type=int, default=42, help='Random seed for synthetic tests')
    args = parser.parse_args()

    engine = create_learning_engine(
        database_url=args.database_url,
        scorer=linear_scorer,
        create_schema=True,
    )
    try:
        print('Initializing algorithms...')
        result = initialize_algorithms(engine.versions, engine.research)
        print(f'  {len(result["versions"])} versions created, {len(result["findings"])} findings saved')

        if args.with_tests > 0:
            print('Seeding A/B tests...')
            rng = random.Random(args.seed)
            for algorithm_type in ALGORITHM_TYPES:
                seed_tests(engine, algorithm_type, args.with_tests, rng)

        print('\nDone!')
    finally:
        engine.close()


if __name__ == '__main__':
    main()
