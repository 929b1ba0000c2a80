"""
DDT-LCM
=======

Tree-regularized Bayesian latent class analysis for multivariate binary data.

Latent classes sit at the leaves of a Dirichlet diffusion tree: classes that
share a long path through the tree have similar item response profiles, so
the tree both shrinks class profiles towards each other and describes how
the classes are related. Items are partitioned into major groups, each with
its own diffusion variance.

Posterior inference combines:

- **Metropolis-Hastings tree moves**: detach a subtree and regraft it with
  the DDT path process
- **Polya-Gamma Gibbs sweeps**: conjugate updates of item logits, diffusion
  variances, the divergence constant, class probabilities and assignments

Quick Start
-----------
```python
from ddtlcm import DDTLCMParams, run_chain, summarize, predict_point

params = DDTLCMParams(n_classes=6, total_iters=5000)
chain = run_chain(responses, item_membership, params, seed=42)
summary = summarize(chain, burnin=2500)

summary.response_probs_summary      # K * J rows with credible intervals
summary.tree_map.to_newick()        # MAP tree

prediction = predict_point(summary, new_responses)
```

Package Structure
-----------------
- `config`: Environment-based settings and logging setup
- `schemas`: Validated sampler parameters
- `data`: Response matrix and item group validation
- `tree`: Arena representation of diffusion trees
- `models`: DDT prior, LCM likelihood and the two samplers
- `sampler`: Chain driver
- `summary`: Relabeling, posterior summaries and information criteria
- `predict`: Class prediction for new subjects
- `progress`: Progress callbacks
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, get_settings, setup_logging
from .schemas import DDTLCMParams, InitMethodEnum
from .exceptions import DDTLCMError, InputValidationError, NumericDomainError

# Data and tree
from .data import ResponseData, validate_response_data
from .tree import DiffusionTree

# Subpackages
from . import models

# Inference
from .state import ChainState, PosteriorSample
from .sampler import ChainResult, run_chain, run_chains
from .summary import (
    PosteriorSummary,
    compute_information_criteria,
    relabel_samples,
    summarize,
)
from .predict import ClassPrediction, predict_point, predict_posterior
from .progress import ChainProgressCallback, ProgressUpdate

__all__ = [
    # Version
    '__version__',
    # Config
    'Settings',
    'get_settings',
    'setup_logging',
    'DDTLCMParams',
    'InitMethodEnum',
    # Errors
    'DDTLCMError',
    'InputValidationError',
    'NumericDomainError',
    # Data
    'ResponseData',
    'validate_response_data',
    'DiffusionTree',
    # Subpackages
    'models',
    # Inference
    'ChainState',
    'PosteriorSample',
    'ChainResult',
    'run_chain',
    'run_chains',
    'PosteriorSummary',
    'compute_information_criteria',
    'relabel_samples',
    'summarize',
    'ClassPrediction',
    'predict_point',
    'predict_posterior',
    'ChainProgressCallback',
    'ProgressUpdate',
]
