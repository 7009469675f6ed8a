#!/usr/bin/env python3
import aws_cdk as cdk

from stacks.apps import build_app

app = cdk.App()

# Select the stack set with `-c app=<name>`; defaults to the service.
build_app(app)

app.synth()
