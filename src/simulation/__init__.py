"""
Synthetic data generation for the demonstrated models.

**Usage:**
```python
from simulation import SyntheticDataGenerator

gen = SyntheticDataGenerator(n_obs=100, random_seed=1)
data = gen.linear_regression(alpha=0.1, beta=(0.3, -0.3))
```
"""

from simulation.synthetic import SyntheticDataGenerator

__all__ = [
    "SyntheticDataGenerator",
]
