"""Importing this package registers every table on Base.metadata."""
from gaeo_learning.models.algorithm_version import AlgorithmVersion
from gaeo_learning.models.research_finding import ResearchFinding
from gaeo_learning.models.algorithm_test import AlgorithmTest
from gaeo_learning.models.prompt_template import PromptTemplate
from gaeo_learning.models.agent_reward import AgentReward
from gaeo_learning.models.learning_metric import LearningMetricDaily

__all__ = [
    'AlgorithmVersion',
    'ResearchFinding',
    'AlgorithmTest',
    'PromptTemplate',
    'AgentReward',
    'LearningMetricDaily',
]
