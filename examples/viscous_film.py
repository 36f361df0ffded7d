import argparse
import logging

import numpy as np
import pymultilayer

parser = argparse.ArgumentParser()
parser.add_argument("--config", help="YAML file with a viscosity section")
parser.add_argument("--nstep", type=int, default=100)
args = parser.parse_args()

# Parameters for horizontal grid and film thickness
nx = 64
ny = 32
nz = 8
Delta = 0.01
H0 = 0.002
A = 0.2

x = (np.arange(nx) + 0.5) * Delta
H = H0 * (1.0 + A * np.sin(2.0 * np.pi * x / (nx * Delta)))[np.newaxis, :] * np.ones(
    (ny, 1)
)

logger = pymultilayer.parallel.get_logger(level=logging.INFO)
domain = pymultilayer.domain.create_cartesian(
    nx, ny, nz, Delta, H=H, periodic_x=True, logger=logger
)

if args.config:
    node = pymultilayer.config.configure(args.config)
    settings = pymultilayer.ViscositySettings.from_config(node["viscosity"], logger)
else:
    settings = pymultilayer.ViscositySettings(
        nu=1e-3, lambda_b=1e-4, horizontal_diffusion=True
    )
viscosity = pymultilayer.Viscosity(settings)
viscosity.initialize(domain)

T = domain.T
u = T.array(
    name="u",
    units="m s-1",
    long_name="velocity in x-direction",
    z=pymultilayer.CENTERS,
    fill=0.0,
)
v = T.array(
    name="v",
    units="m s-1",
    long_name="velocity in y-direction",
    z=pymultilayer.CENTERS,
    fill=0.0,
)
ha_x = domain.U.array(z=pymultilayer.CENTERS, fill=0.0)
ha_y = domain.V.array(z=pymultilayer.CENTERS, fill=0.0)
u.fill(0.01)

timestep = 0.5 * domain.max_diffusive_timestep(max(settings.nu, 1e-12))
for istep in range(args.nstep):
    ha_x.fill(0.0)
    ha_y.fill(0.0)
    if not viscosity.advance(timestep, u, v, ha_x, ha_y, check_finite=True):
        break
    if (istep + 1) % 10 == 0:
        momentum = (u.values * T.hn.values).sum()
        logger.info("step %i: total x-momentum %.6e" % (istep + 1, momentum))

print(u.xarray.isel(z=-1).mean().values)
