#!/usr/bin/env python3
from setuptools import setup

setup(
    name='libcouch',
    version='0.1.0',
    license='GNU Affero GPL v3',
    author='Florian Leitner',
    author_email='florian.leitner@gmail.com',
    url='https://github.com/fnl/libfnl',
    description='a CouchDB and Cloudant client for views and faceted search',
    long_description=open('README.rst').read(),
    python_requires='>=3.6',
    install_requires=[],
    extras_require={
        'test': [
            'pytest >= 3.0',
            'mock >= 2.0',
        ],
    },
    packages=[
        'libcouch',
    ],
    package_dir={'': 'src'},
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Web Environment',
        'License :: OSI Approved :: GNU Affero General Public License v3',
        'Operating System :: POSIX',
        'Programming Language :: Python :: 3',
        'Topic :: Database :: Front-Ends',
        'Topic :: Software Development :: Libraries',
    ],
)
