from .mmp import run_mmp_gradient
