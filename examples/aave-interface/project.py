# project.py — Aave Protocol Interface
#
# Hermetica projects are defined in Python. Each project declares:
#   - Sources:    the application tree and its yarn.lock
#   - Cache hash: the aggregate hash of every dependency tarball
#   - Toolchain:  the pinned node/yarn the build must run under
#   - Outputs:    what the artifact keeps, and how to start it
#
# Clone https://github.com/aave/interface next to this file (as ./interface),
# then run `hermetica prefetch` and paste the printed hash into cache_hash.

from hermetica import ImageConfig, Meta, OutputSpec, Project, Toolchain

project = Project(
    pname="aave-interface",
    version="1.0.0",
    src="./interface",
    lockfile="yarn.lock",
    cache_hash="",                                       # fill in from `hermetica prefetch`
    toolchain=Toolchain(node="22"),
    build_command=["yarn", "build"],
    build_env={
        "NEXT_TELEMETRY_DISABLED": "1",
        "CYPRESS_INSTALL_BINARY": "0",
    },
    outputs=OutputSpec(
        required=[".next", "node_modules", "package.json"],
        optional=["public", "next.config.js"],
    ),
    launcher=["node_modules/.bin/next", "start"],
    port=3000,
    image=ImageConfig(
        name="aave-interface",
        env={"NODE_ENV": "production"},
    ),
    trust_anchor_url="https://github.com/aave.gpg",
    meta=Meta(
        description="Aave Protocol Interface",
        homepage="https://github.com/aave/interface",
        license="BSD-3-Clause",
        main_program="aave-interface",
    ),
)
