"""sod_spread: climate-driven anisotropic spread of Phytophthora ramorum.

A lattice-based, weekly, stochastic model of Sudden Oak Death spread over a
heterogeneous landscape of two host species:
  - Reservoir host (bay laurel, UMCA): sporulates, survives infection
  - Mortality-susceptible host (SOD oaks): dead-end host, tracked output
  - Weather suitability (moisture × temperature) scales spore release
  - Heavy-tailed Cauchy dispersal, isotropic or wind-biased (von Mises)
  - Proportional allocation of landed spores across susceptible hosts
"""

__version__ = "0.1.0"
