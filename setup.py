#!/usr/bin/env python

from setuptools import setup

LONG_DESCRIPTION = \
'''
Walk the pileup of an indexed BAM or CRAM file and write
per-position base counts. Reads contributing to the counts,
and the positions written, are chosen by Python expressions
given on the command line. Positions can be annotated with
the reference base, or a window of flanking reference bases,
and regions can be excluded with a BED file.
'''


setup(
    name='pilefilter',
    version='0.1.0.0',
    author='Bernie Pope',
    author_email='bjpope@unimelb.edu.au',
    packages=['pilefilter'],
    package_dir={'pilefilter': 'pilefilter'},
    entry_points={
        'console_scripts': ['pilefilter = pilefilter.pilefilter:main']
    },
    license='MIT',
    description=('Expression filtered pileup base counts'),
    long_description=(LONG_DESCRIPTION),
    python_requires='>=3.8',
    install_requires=["pysam>=0.16.0.1", "intervaltree>=3.0.2"],
    extras_require={'test': ["pytest"]},
)
