# FlowCode Influence Function Packages
"""
Package structure:
- influence: Influence functions of risk and performance estimators
  (nuisance estimation, formulas, shape/series evaluation, robust
  cleaning, AR prewhitening, plotting)
"""
