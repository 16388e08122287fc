"""
Shot Rates: hierarchical Bayesian models for soccer shot-attempt rates.

This package provides:
- Resolution of raw event and match records into independent per-match observations
- Pooled Poisson, Poisson regression and negative-binomial regression models
- Multi-chain posterior sampling through an engine-agnostic boundary
- Convergence diagnostics (PSRF, ESS) and DIC model comparison
- Posterior-predictive simulation at chosen win probabilities
"""

__version__ = "0.1.0"
