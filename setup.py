#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""The setup script."""

from setuptools import setup, find_packages

with open('README.rst') as readme_file:
    readme = readme_file.read()

with open('requirements.txt') as r:
    requirements = [line.strip() for line in r.readlines()
                    if line.strip() and not line.startswith('#')]

test_requirements = ['pytest', ]

setup(
    name='kubeprov',
    version='0.3.0',
    description='Provision kubeadm cluster nodes which share their join '
                'parameters through S3',
    long_description=readme,
    long_description_content_type='text/x-rst',
    packages=find_packages(include=['kubeprov', 'kubeprov.*']),
    python_requires='>=3.8',
    install_requires=requirements,
    tests_require=test_requirements,
    extras_require={'test': test_requirements},
    entry_points={
        'console_scripts': [
            'kubeprov=kubeprov.kubeprov:main',
        ],
    },
    classifiers=[
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Programming Language :: Python :: 3',
        'Topic :: System :: Clustering',
    ],
)
