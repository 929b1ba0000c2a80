"""
Model components of the DDT-LCM sampler.

- `ddt`: Dirichlet diffusion tree prior
- `lca`: Latent class likelihood and EM fitting
- `polya_gamma`: Polya-Gamma random variates
- `proposal`: Metropolis-Hastings detach-and-regraft tree moves
- `gibbs`: Polya-Gamma augmented Gibbs updates
"""

from .ddt import (
    DivergenceFunction,
    divergence_exposure,
    harmonic_number,
    log_ddt_prior,
    log_location_prior,
    log_structure_prior,
)
from .lca import (
    class_posteriors,
    fit_lca,
    lcm_log_likelihood,
    subject_log_likelihoods,
)
from .polya_gamma import polya_gamma_mean, sample_polya_gamma
from .proposal import TreeMove, propose_and_accept
from .gibbs import gibbs_sweep

__all__ = [
    # DDT prior
    'DivergenceFunction',
    'divergence_exposure',
    'harmonic_number',
    'log_ddt_prior',
    'log_location_prior',
    'log_structure_prior',
    # LCA
    'class_posteriors',
    'fit_lca',
    'lcm_log_likelihood',
    'subject_log_likelihoods',
    # Polya-Gamma
    'polya_gamma_mean',
    'sample_polya_gamma',
    # Samplers
    'TreeMove',
    'propose_and_accept',
    'gibbs_sweep',
]
