"""
Orbit Determination Simulation Core
===================================
Numerical propagation, state-derivative composition, observation partials
and batch orbit determination for spacecraft dynamics.

Architecture:
    - Embedded Runge-Kutta pairs with adaptive step-size control
    - Composed translational, rotational, body-mass and custom states
    - Quaternion and exponential-map attitude propagation
    - Variational equations for state transition and sensitivity matrices
    - Light-time solution with first-order relativistic correction
    - One-way range and angular position observables with analytic partials
    - Batch least-squares estimation and covariance mapping
"""

__version__ = "0.1.0"
