import os

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# --- Percentiles ---
DEFAULT_PERCENTILES = [
    int(p) for p in os.getenv("WINDCUBE_DEFAULT_PERCENTILES", "10,25,50,75,90").split(",") if p.strip()
]
# Where the scenario document keeps the simulation percentiles and the persisted percentile selection
PERCENTILES_PATH = os.getenv("WINDCUBE_PERCENTILES_PATH", "settings.simulation.percentiles").split(".")
PERCENTILE_DATA_PATH = os.getenv("WINDCUBE_PERCENTILE_DATA_PATH", "settings.project.percentileData").split(".")

# --- Audit Trail ---
AUDIT_PREFERRED_PERCENTILE = int(os.getenv("WINDCUBE_AUDIT_PREFERRED_PERCENTILE", 50))
AUDIT_DATA_SAMPLING = os.getenv("WINDCUBE_AUDIT_DATA_SAMPLING", "True").lower() == "true"

# --- Financial Defaults ---
DEFAULT_PROJECT_LIFE = int(os.getenv("WINDCUBE_DEFAULT_PROJECT_LIFE", 25))
DEFAULT_COST_OF_EQUITY = float(os.getenv("WINDCUBE_DEFAULT_COST_OF_EQUITY", 8.0))  # percent
DEFAULT_LLCR_DISCOUNT_RATE = float(os.getenv("WINDCUBE_DEFAULT_LLCR_DISCOUNT_RATE", 0.05))

# --- Sensitivity ---
SENSITIVITY_ON_REFRESH = os.getenv("WINDCUBE_SENSITIVITY_ON_REFRESH", "True").lower() == "true"
SENSITIVITY_SIGNIFICANCE_THRESHOLD = float(os.getenv("WINDCUBE_SENSITIVITY_SIGNIFICANCE_THRESHOLD", 0.05))
