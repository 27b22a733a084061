#!/usr/bin/env python3
"""
Simple example comparing the doubly-robust and unadjusted confidence sequences.
"""

import sys
import os
# Add parent directory to path to import
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pandas as pd
from pyconfseq import ConfSeqConfig, SequentialATE, confseq_ate, confseq_ate_unadjusted

# Generate dummy data
rng = np.random.default_rng(42)
n = 10000

# Create covariates
X = rng.normal(size=(n, 3))

# Treatment assignment with logistic propensity bounded in [0.2, 0.8]
propensity = 0.2 + 0.6 / (1 + np.exp(-(X[:, 0] - 0.5 * X[:, 1])))
treatment = rng.binomial(1, propensity)

# Outcome with heavy-tailed noise; true ATE = 1
outcome = 1.0 * treatment + X @ np.array([1.0, 0.5, -0.5]) + 2 * X[:, 0] + rng.standard_t(5, size=n)

times = np.unique(np.round(np.logspace(np.log10(250), np.log10(1000), 10)).astype(int))

print(f"Data shape: {X.shape}")
print(f"Treatment group: {treatment.sum()}")
print(f"Control group: {n - treatment.sum()}")
print(f"True treatment effect: 1.0")
print(f"Reporting times: {times.tolist()}")

config = ConfSeqConfig(alpha=0.05, verbose=True)

# 1. Doubly-robust with cross-fitted linear / logistic nuisance functions
dr = confseq_ate(outcome, X, treatment, 'ols', 'ols', 'logit', t_opt=500, times=times, config=config)
print(dr.to_frame())

# 2. Doubly-robust with random forests
dr_rf = confseq_ate(outcome, X, treatment, 'rf', 'rf', 'rf', t_opt=500, times=times, config=config)

# 3. Unadjusted (treated fraction as propensity)
unadj = confseq_ate_unadjusted(outcome, treatment, t_opt=500, times=times, config=config)
print(unadj.to_frame())

print("\n" + "="*60)
print("WIDTH AT THE LAST REPORTED TIME")
print("="*60)
for name, result in [('AIPW (ols/logit)', dr), ('AIPW (rf)', dr_rf), ('Unadjusted', unadj)]:
    last = result.points[-1]
    print(f"{name:18s} width={last.width:.3f}  covers 1 at all times: {result.covers(1.0)}")

# 4. DataFrame interface
data = pd.DataFrame(X, columns=['x1', 'x2', 'x3'])
data['y'] = outcome
data['d'] = treatment
result = SequentialATE(config).calculate(data, outcome='y', treatment='d', covariates=['x1', 'x2', 'x3'],
                                         times=times)
print(f"\nFixed-n 95% CI at n={result.n}: {result.fixed_n_interval()}")
