"""hp-FEM package for 1D nonlinear problems.

This package implements hierarchic (Lobatto) finite elements of variable
degree on 1D meshes, Newton's method for the assembled nonlinear system, and
automatic hp-adaptivity driven by fast trial refinements (FTR).

Main components:
- Mesh, Element: hp mesh with solution slots and DOF numbering
- DiscreteProblem: weak-form registry and Jacobian/residual assembly
- NewtonSolver: Newton iteration on a fixed mesh
- FTRErrorEstimator: per-element error indicators and reference pairs
- AdaptivityController: h, p or hp refinement of marked elements
- AdaptiveDriver: outer solve-estimate-refine loop
- PowerIteration: source iteration for the dominant eigenvalue k_eff
"""

from .datastructures import (
    Element,
    RefElementPair,
    Mesh,
    LEFT,
    RIGHT,
    ANY_MARKER,
    Parameters,
    AdaptivityParameters,
    EigenParameters,
    Metrics,
    TimeSeries,
)
from .errors import (
    HPFemError,
    NewtonNonConvergence,
    LinearSolveFailure,
    AdaptivityDegenerate,
    EigenvalueStagnation,
)
from .mesh import line_mesh, multi_material_mesh
from .assembly import DiscreteProblem, FormData
from .linalg import LinearSystem
from .newton import NewtonSolver, NewtonResult
from .ftr import FTRErrorEstimator
from .amr import AdaptivityController, mark_elements
from .adaptive import AdaptiveDriver, AdaptiveResult
from .eigen import PowerIteration, EigenResult, calc_fission_yield, normalize_to_power
from .problems import (
    FIRST_ORDER_CASES,
    first_order_problem,
    first_order_mesh,
    first_order_exact,
    Materials,
    NeutronicsProblem,
    neutronics_mesh,
)
from .plot_style import ConvergencePlotter, NullSink

__all__ = [
    # Mesh
    "Element",
    "RefElementPair",
    "Mesh",
    "LEFT",
    "RIGHT",
    "ANY_MARKER",
    "line_mesh",
    "multi_material_mesh",
    # Configuration and results
    "Parameters",
    "AdaptivityParameters",
    "EigenParameters",
    "Metrics",
    "TimeSeries",
    # Errors
    "HPFemError",
    "NewtonNonConvergence",
    "LinearSolveFailure",
    "AdaptivityDegenerate",
    "EigenvalueStagnation",
    # Assembly and solvers
    "DiscreteProblem",
    "FormData",
    "LinearSystem",
    "NewtonSolver",
    "NewtonResult",
    # Adaptivity
    "FTRErrorEstimator",
    "AdaptivityController",
    "mark_elements",
    "AdaptiveDriver",
    "AdaptiveResult",
    # Eigenvalue
    "PowerIteration",
    "EigenResult",
    "calc_fission_yield",
    "normalize_to_power",
    # Problems
    "FIRST_ORDER_CASES",
    "first_order_problem",
    "first_order_mesh",
    "first_order_exact",
    "Materials",
    "NeutronicsProblem",
    "neutronics_mesh",
    # Output
    "ConvergencePlotter",
    "NullSink",
]
