CENTERS = 1

FILL_VALUE = -2e20

DRY = 1e-10  #: thickness (m) at or below which a cell is treated as dry
MAX_SLOPE = 0.577350269189626  #: tan(30 degrees), limit for interface slopes

SURFACE_STRESS_ITERATIONS = 10  #: number of Jacobi sweeps for the tangential stress
