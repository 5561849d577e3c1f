"""
This module configures the installation setup for the sysobs package.
"""
from setuptools import setup, find_packages

# Read the long description from the README.rst
with open('README.rst', 'r', encoding="utf-8") as f:
    long_description = f.read()

setup(
    name='sysobs',
    version='0.1.0',
    description='System versus observer effects in two-channel neural recordings',
    long_description=long_description,
    long_description_content_type='text/x-rst',
    packages=find_packages(include=['sysobs', 'sysobs.*']),
    include_package_data=True,
    python_requires='>=3.8',
    install_requires=[
        "numpy>=1.21",
        "scipy>=1.5",
        "matplotlib>=3.3",
        "joblib>=1.1",
        "h5py>=3.1",
    ],
    extras_require={
        'test': [
            "pytest>=7.0",
        ],
    },
    classifiers=[
        'Intended Audience :: Science/Research',
        'Intended Audience :: Developers',
        'License :: OSI Approved',
        'Programming Language :: Python',
        'Topic :: Software Development',
        'Topic :: Scientific/Engineering',
        'Operating System :: Unix'
    ],
    entry_points={
        'console_scripts': [
            'sysobs-compare = sysobs.cli:main',
        ],
    },
)
