"""Downloaders that fill the database with literacy, attainment, graduation, enrollment, NAEP and ECLS data."""