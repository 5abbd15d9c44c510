# Application settings

# --- Pipeline Parameters ---
PIPELINE_DEFAULTS = {
    # Work-items per workgroup for the pixel-parallel stages (histogram, back-projection).
    # Must not exceed the device limit.
    "workgroup_size": 256,
    # Target group count = compute units * this factor (capped by what the image needs)
    "groups_per_compute_unit": 4,
    # Check every readback against the histogram/CDF/LUT invariants
    "validate_stages": True,
}

# --- Device Settings ---
DEVICE_DEFAULTS = {
    # NumPy reference device limits
    "reference_max_buffer_size": 1 << 30,  # 1 GiB
    "reference_max_workgroup_size": 1024,
    # wgpu adapters do not report a compute unit count
    "wgpu_compute_units": 16,
    "wgpu_power_preference": "high-performance",
}

# --- Command Line Defaults ---
CLI_DEFAULTS = {
    "platform": 0,
    "device": 0,
    "output_suffix": "_equalized",
}

# --- Logging ---
LOGGING_LEVEL = "INFO" # Options: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
