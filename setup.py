"""
Packaging for onionctl. Tests are collected by pytest from the *_test.py modules beside the code:

    pip install -e .[test]
    pytest src
"""

from setuptools import setup

setup(
    name='onionctl',
    version='0.0.1',
    description='Starts, configures and supervises a Tor network agent through its control port.',
    url='',
    author='',
    author_email='',
    license='LGPL',
    package_dir={'': 'src'},
    packages=['onionctl', 'onionctl.config', 'onionctl.control', 'onionctl.support'],
    package_data={'onionctl': ['*.cfg']},
    python_requires='>=3.6',
    install_requires=['configobj', 'stem'],
    extras_require={
        'test': ['pytest', 'PyHamcrest>=2.0.3', 'timeout-decorator'],
    },
    zip_safe=False,
)
