"""Stack deployment CLI for the todo application.

Uploads CloudFormation templates to S3 and drives stack create/update
cycles. The command surface is implemented with Typer and Rich; command
results are printed as JSON.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
