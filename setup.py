#! /usr/bin/env python
# SPDX-License-Identifier: GPL-2.0-or-later

from setuptools import setup, find_packages

setup(
    name='Arena',
    version='1.0',
    description='Matchmaking and presence services for a game backend',
    packages=find_packages(exclude=['arena.tests']),
    install_requires=[
        'aiohttp>=3.9',
        'PyJWT>=2.0',
        'PyYAML',
        'prometheus_client',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-aiohttp',
            'pytest-asyncio',
            'pytest-mock',
        ],
    },
    zip_safe=False,
)
