# Pod climate defaults
POD_AMBIENT_C = 31.0
POD_HVAC_RAMP_C_PER_SEC = 0.15
POD_OFF_DRIFT_C_PER_SEC = 0.05

# CO2 rises when extraction stops (ppm per second)
POD_CO2_BUILDUP_PPM_PER_SEC = 2.0
POD_CO2_RECOVERY_PPM_PER_SEC = 5.0
