"""
Physical and mathematical constants.

SI units throughout (m, s, kg, rad).

Sources:
    - IAU 2012 for astronomical constants
    - IERS conventions for Earth parameters
"""

import numpy as np

# ---------------------------------------------------------------------------
# Mathematical constants
# ---------------------------------------------------------------------------
PI = np.pi
TWO_PI = 2.0 * np.pi

# ---------------------------------------------------------------------------
# Physical constants
# ---------------------------------------------------------------------------
SPEED_OF_LIGHT = 299792458.0            # [m/s], exact
G0 = 9.80665                            # Standard gravitational acceleration [m/s^2]

# ---------------------------------------------------------------------------
# Body parameters
# ---------------------------------------------------------------------------
MU_EARTH = 3.986004418e14               # [m^3/s^2]
R_EARTH = 6378137.0                     # Equatorial radius [m]
MU_SUN = 1.32712440018e20               # [m^3/s^2]
AU = 149597870700.0                     # Astronomical unit [m]
